"""Pytest fixtures for Spy Cat Agency tests."""

from datetime import UTC, datetime

import httpx
import pytest
import respx

from spycats.breeds import BreedValidator, reset_breed_validator
from spycats.config import (
    BreedApiConfig,
    Config,
    DatabaseConfig,
    SupabaseConfig,
    reset_config,
)
from spycats.db import SupabaseClient, reset_db
from spycats.db_memory import InMemoryClient
from spycats.missions import NewTarget

SUPABASE_URL = "https://test.supabase.co"
CAT_API_URL = "https://cat-api.test/v1"

KNOWN_BREEDS = [
    {"id": "abys", "name": "Abyssinian"},
    {"id": "beng", "name": "Bengal"},
    {"id": "sibe", "name": "Siberian"},
]

# =============================================================================
# Environment Setup
# =============================================================================


@pytest.fixture(autouse=True)
def setup_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("DB_BACKEND", "supabase")
    monkeypatch.setenv("SUPABASE_URL", SUPABASE_URL)
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "test-service-key")
    monkeypatch.setenv("CAT_API_URL", CAT_API_URL)
    monkeypatch.delenv("CAT_API_KEY", raising=False)

    # Reset global state after each test
    yield
    reset_config()
    reset_db()
    reset_breed_validator()


@pytest.fixture
def config():
    """Get test configuration."""
    return Config(
        supabase=SupabaseConfig(
            url=SUPABASE_URL,
            service_key="test-service-key",
        ),
        database=DatabaseConfig(backend="supabase"),
        breeds=BreedApiConfig(url=CAT_API_URL, cache_ttl_seconds=3600),
    )


@pytest.fixture
def db_client(config):
    """Get a Supabase client configured for testing."""
    return SupabaseClient(config.supabase)


@pytest.fixture
def memory_db():
    """In-memory backend with the full schema and stored functions."""
    return InMemoryClient()


# =============================================================================
# Mock HTTP Responses
# =============================================================================


@pytest.fixture
def mock_supabase():
    """Mock Supabase API responses."""
    with respx.mock(assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
def breed_validator(config):
    """Breed validator with a dedicated client; mock it with respx."""
    return BreedValidator(config.breeds, client=httpx.AsyncClient())


@pytest.fixture
def mock_breeds(mock_supabase):
    """TheCatAPI /breeds returning KNOWN_BREEDS."""
    mock_supabase.get(f"{CAT_API_URL}/breeds").mock(
        return_value=httpx.Response(200, json=KNOWN_BREEDS)
    )
    return mock_supabase


def _ts() -> str:
    return datetime.now(UTC).isoformat()


@pytest.fixture
def cat_row():
    """A cats row as PostgREST returns it."""
    return {
        "id": 1,
        "name": "Tom",
        "years_of_experience": 4,
        "breed": "Siberian",
        "salary": 1500.0,
        "status": "available",
        "created_at": _ts(),
        "updated_at": _ts(),
    }


@pytest.fixture
def mission_row():
    """An unassigned missions row."""
    return {
        "id": 10,
        "cat_id": None,
        "completed": False,
        "created_at": _ts(),
        "updated_at": _ts(),
    }


@pytest.fixture
def target_rows():
    """Two open targets of mission 10."""
    return [
        {
            "id": 100,
            "mission_id": 10,
            "name": "Jerry",
            "country": "UA",
            "notes": "",
            "completed": False,
            "created_at": _ts(),
            "updated_at": _ts(),
        },
        {
            "id": 101,
            "mission_id": 10,
            "name": "Spike",
            "country": "PL",
            "notes": "big dog",
            "completed": False,
            "created_at": _ts(),
            "updated_at": _ts(),
        },
    ]


@pytest.fixture
def new_targets():
    return [
        NewTarget(name="Jerry", country="UA"),
        NewTarget(name="Spike", country="PL", notes="big dog"),
    ]


# =============================================================================
# Seeding helpers for the in-memory backend
# =============================================================================


@pytest.fixture
def make_cat(memory_db):
    """Insert a cat row directly into the in-memory backend."""

    async def _make(name="Tom", status="available", salary=1500.0):
        return await memory_db.insert(
            "cats",
            {
                "name": name,
                "years_of_experience": 3,
                "breed": "Siberian",
                "salary": salary,
                "status": status,
            },
        )

    return _make
