"""Tests for the TheCatAPI breed validator."""

import asyncio

import httpx
import pytest

from spycats.breeds import Breed, BreedLookupError, BreedValidator
from spycats.config import BreedApiConfig

CAT_API_URL = "https://cat-api.test/v1"


class TestBreedValidator:
    """Tests for BreedValidator."""

    @pytest.mark.asyncio
    async def test_known_breed_is_valid(self, breed_validator, mock_breeds):
        assert await breed_validator.is_valid_breed("Siberian") is True

    @pytest.mark.asyncio
    async def test_match_is_exact(self, breed_validator, mock_breeds):
        assert await breed_validator.is_valid_breed("siberian") is False
        assert await breed_validator.is_valid_breed("Siberian ") is False
        assert await breed_validator.is_valid_breed("Unicorn") is False

    @pytest.mark.asyncio
    async def test_breed_list_is_cached(self, breed_validator, mock_breeds):
        route = mock_breeds.routes[0]

        await breed_validator.is_valid_breed("Bengal")
        await breed_validator.is_valid_breed("Abyssinian")
        breeds = await breed_validator.get_breeds()

        assert route.call_count == 1
        assert Breed(id="beng", name="Bengal") in breeds

    @pytest.mark.asyncio
    async def test_expired_cache_refetches(self, mock_breeds):
        validator = BreedValidator(
            BreedApiConfig(url=CAT_API_URL, cache_ttl_seconds=0),
            client=httpx.AsyncClient(),
        )

        await validator.is_valid_breed("Bengal")
        await validator.is_valid_breed("Bengal")

        assert mock_breeds.routes[0].call_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self, breed_validator, mock_breeds):
        await breed_validator.get_breeds()
        breed_validator.invalidate()
        await breed_validator.get_breeds()

        assert mock_breeds.routes[0].call_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, breed_validator, mock_breeds):
        results = await asyncio.gather(
            *(breed_validator.is_valid_breed("Siberian") for _ in range(5))
        )

        assert results == [True] * 5
        assert mock_breeds.routes[0].call_count == 1

    @pytest.mark.asyncio
    async def test_http_error_raises_lookup_error(self, breed_validator, mock_supabase):
        route = mock_supabase.get(f"{CAT_API_URL}/breeds").mock(
            return_value=httpx.Response(503, json={"message": "down"})
        )

        with pytest.raises(BreedLookupError):
            await breed_validator.is_valid_breed("Siberian")

        # Failures are not cached
        with pytest.raises(BreedLookupError):
            await breed_validator.is_valid_breed("Siberian")
        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_malformed_payload_raises_lookup_error(self, breed_validator, mock_supabase):
        mock_supabase.get(f"{CAT_API_URL}/breeds").mock(
            return_value=httpx.Response(200, json=[{"id": "x"}])
        )

        with pytest.raises(BreedLookupError):
            await breed_validator.get_breeds()

    @pytest.mark.asyncio
    async def test_api_key_header_sent_when_configured(self, mock_breeds):
        validator = BreedValidator(
            BreedApiConfig(url=CAT_API_URL, api_key="secret"),
            client=httpx.AsyncClient(),
        )

        await validator.get_breeds()

        request = mock_breeds.routes[0].calls.last.request
        assert request.headers["x-api-key"] == "secret"

    @pytest.mark.asyncio
    async def test_no_api_key_header_by_default(self, breed_validator, mock_breeds):
        await breed_validator.get_breeds()

        request = mock_breeds.routes[0].calls.last.request
        assert "x-api-key" not in request.headers


class TestBreedApiConfig:
    def test_trailing_slash_stripped(self, monkeypatch):
        monkeypatch.setenv("CAT_API_URL", "https://api.thecatapi.com/v1/")

        assert BreedApiConfig.from_env().url == "https://api.thecatapi.com/v1"

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CAT_API_URL", raising=False)
        monkeypatch.delenv("BREED_CACHE_TTL_SECONDS", raising=False)

        cfg = BreedApiConfig.from_env()
        assert cfg.url == "https://api.thecatapi.com/v1"
        assert cfg.cache_ttl_seconds == 3600
        assert cfg.api_key is None
