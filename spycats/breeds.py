"""Cat breed validation against TheCatAPI.

The breed list is fetched from ``{CAT_API_URL}/breeds`` and cached for
``BREED_CACHE_TTL_SECONDS``. Concurrent callers that find the cache stale
share a single refresh.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from .config import BreedApiConfig, get_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Breed:
    """A breed as listed by TheCatAPI."""

    id: str
    name: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Breed":
        return cls(id=str(data.get("id", "")), name=data["name"])


class BreedLookupError(Exception):
    """TheCatAPI could not be reached or returned an unusable response."""


class BreedValidator:
    """Caching client for TheCatAPI breed list."""

    def __init__(
        self,
        config: BreedApiConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._config = config
        self._client = client
        self._breeds: list[Breed] = []
        self._cache_expiry: float = 0
        self._refresh_lock = asyncio.Lock()

    @property
    def config(self) -> BreedApiConfig:
        if self._config is None:
            self._config = get_config().breeds
        return self._config

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["x-api-key"] = self.config.api_key
        return headers

    async def get_breeds(self) -> list[Breed]:
        """Return the breed list, refreshing it when the cache has expired.

        Raises:
            BreedLookupError: When the list cannot be fetched
        """
        if time.monotonic() < self._cache_expiry:
            return self._breeds

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited.
            if time.monotonic() < self._cache_expiry:
                return self._breeds

            try:
                response = await self.client.get(
                    f"{self.config.url}/breeds", headers=self._headers()
                )
                response.raise_for_status()
                breeds = [Breed.from_dict(b) for b in response.json()]
            except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
                raise BreedLookupError(f"failed to fetch breeds: {exc}") from exc

            self._breeds = breeds
            self._cache_expiry = time.monotonic() + self.config.cache_ttl_seconds
            logger.info("Fetched %d breeds from TheCatAPI", len(breeds))
            return self._breeds

    async def is_valid_breed(self, name: str) -> bool:
        """Check whether *name* exactly matches a known breed name."""
        breeds = await self.get_breeds()
        return any(b.name == name for b in breeds)

    def invalidate(self) -> None:
        """Drop the cached breed list."""
        self._cache_expiry = 0

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global validator instance
_breed_validator: BreedValidator | None = None


def get_breed_validator() -> BreedValidator:
    """Get the global breed validator instance."""
    global _breed_validator
    if _breed_validator is None:
        _breed_validator = BreedValidator()
    return _breed_validator


def reset_breed_validator() -> None:
    """Reset the global breed validator (for testing)."""
    global _breed_validator
    _breed_validator = None
