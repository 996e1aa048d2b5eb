"""Fixtures for running the agency against a real PostgREST + PostgreSQL.

Bring up PostgreSQL with supabase/migrations applied and PostgREST in front
of it (no /rest/v1 prefix), signed with the local JWT secret. Every test in
this directory skips when PostgREST does not answer.

    INTEGRATION_POSTGREST_URL  default http://localhost:3000
    INTEGRATION_JWT_SECRET     default super-secret-jwt-token-for-local-dev
"""

import functools
import os
import time

import httpx
import jwt
import pytest

from spycats.assignment import AssignmentCoordinator
from spycats.completion import CompletionCoordinator
from spycats.config import SupabaseConfig, reset_config
from spycats.db import SupabaseClient
from spycats.missions import MissionStore

POSTGREST_URL = os.environ.get("INTEGRATION_POSTGREST_URL", "http://localhost:3000")
JWT_SECRET = os.environ.get("INTEGRATION_JWT_SECRET", "super-secret-jwt-token-for-local-dev")

# Deleting missions removes their targets via ON DELETE CASCADE.
TABLES_TO_CLEAR = ("missions", "cats")


def _service_role_token(ttl_seconds: int = 3600) -> str:
    issued = int(time.time())
    claims = {"role": "service_role", "iss": "supabase", "iat": issued, "exp": issued + ttl_seconds}
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")


@functools.cache
def _postgrest_reachable() -> bool:
    try:
        return httpx.get(POSTGREST_URL, timeout=2.0).status_code == 200
    except httpx.HTTPError:
        return False


@pytest.fixture
def supabase_config():
    return SupabaseConfig(url=POSTGREST_URL, service_key=_service_role_token(), rest_prefix="")


@pytest.fixture(autouse=True)
def setup_env(monkeypatch, supabase_config):
    """Point the global config at the local PostgREST instead of the unit-test fake."""
    monkeypatch.setenv("DB_BACKEND", "supabase")
    monkeypatch.setenv("SUPABASE_URL", supabase_config.url)
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", supabase_config.service_key)
    monkeypatch.setenv("SUPABASE_REST_PREFIX", "")
    yield
    reset_config()


@pytest.fixture
async def db_client(supabase_config):
    client = SupabaseClient(supabase_config)
    yield client
    await client.close()


@pytest.fixture
def make_client(supabase_config):
    """Build an independent client, one per simulated concurrent caller.

    Callers close what they create.
    """
    return lambda: SupabaseClient(supabase_config)


@pytest.fixture
def store(db_client):
    return MissionStore(db_client)


@pytest.fixture
def assignment(db_client):
    return AssignmentCoordinator(db_client)


@pytest.fixture
def completion(db_client):
    return CompletionCoordinator(db_client)


@pytest.fixture
def make_cat(db_client):
    """Insert a cat row directly; breed validation is not under test here."""

    async def _make(name="Tom", breed="Siberian"):
        return await db_client.insert(
            "cats",
            {"name": name, "years_of_experience": 3, "breed": breed, "salary": 1000},
        )

    return _make


@pytest.fixture(autouse=True)
async def clean_database(supabase_config):
    # The skip lives here because async autouse fixtures may run before sync ones.
    if not _postgrest_reachable():
        pytest.skip(f"PostgREST not reachable at {POSTGREST_URL}")

    headers = {
        "apikey": supabase_config.service_key,
        "Authorization": f"Bearer {supabase_config.service_key}",
    }

    async def _clear() -> None:
        async with httpx.AsyncClient(base_url=POSTGREST_URL, timeout=10.0) as client:
            for table in TABLES_TO_CLEAR:
                response = await client.delete(f"/{table}?id=not.is.null", headers=headers)
                response.raise_for_status()

    await _clear()
    yield
    await _clear()
