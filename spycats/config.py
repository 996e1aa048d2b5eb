"""Configuration management for the Spy Cat Agency service.

Environment variables:
    DB_BACKEND: Database backend - "supabase" (default), "postgres" or "memory"
    SUPABASE_URL: Supabase project URL
    SUPABASE_SERVICE_KEY: Service role key for full access
    SUPABASE_REST_PREFIX: PostgREST path prefix (default: /rest/v1)
    POSTGRES_DSN: PostgreSQL connection string (when DB_BACKEND=postgres)
    POSTGRES_POOL_MIN: Minimum pool size (default: 2)
    POSTGRES_POOL_MAX: Maximum pool size (default: 10)
    CAT_API_URL: TheCatAPI base URL (default: https://api.thecatapi.com/v1)
    CAT_API_KEY: Optional TheCatAPI key, sent as x-api-key
    CAT_API_TIMEOUT: Breed lookup timeout in seconds (default: 10)
    BREED_CACHE_TTL_SECONDS: Breed list cache TTL (default: 3600)
    API_HOST: HTTP API host (default: 0.0.0.0)
    API_PORT: HTTP API port (default: 8080)
    API_WORKERS: Number of uvicorn workers (default: 1)
    API_ACCESS_LOG: Enable uvicorn access logging (default: false)
    LOG_LEVEL: Root log level for the HTTP entry point (default: INFO)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_REST_PREFIX = "/rest/v1"
DEFAULT_CAT_API_URL = "https://api.thecatapi.com/v1"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class SupabaseConfig:
    """Supabase connection configuration."""

    url: str
    service_key: str
    # "" when talking to a bare PostgREST rather than the Supabase gateway
    rest_prefix: str = DEFAULT_REST_PREFIX

    @classmethod
    def from_env(cls) -> SupabaseConfig:
        missing = [
            name for name in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY") if not os.environ.get(name)
        ]
        if missing:
            raise ValueError(
                f"{', '.join(missing)} required when DB_BACKEND=supabase"
            )
        return cls(
            url=os.environ["SUPABASE_URL"].rstrip("/"),
            service_key=os.environ["SUPABASE_SERVICE_KEY"],
            rest_prefix=os.environ.get("SUPABASE_REST_PREFIX", DEFAULT_REST_PREFIX),
        )


@dataclass
class PostgresConfig:
    """asyncpg pool settings (DB_BACKEND=postgres)."""

    dsn: str = ""
    pool_min: int = 2
    pool_max: int = 10

    @classmethod
    def from_env(cls) -> PostgresConfig:
        return cls(
            dsn=os.environ.get("POSTGRES_DSN", ""),
            pool_min=_env_int("POSTGRES_POOL_MIN", 2),
            pool_max=_env_int("POSTGRES_POOL_MAX", 10),
        )


@dataclass
class DatabaseConfig:
    backend: str = "supabase"
    postgres: PostgresConfig = field(default_factory=PostgresConfig)

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        return cls(
            backend=os.environ.get("DB_BACKEND", "supabase").strip().lower(),
            postgres=PostgresConfig.from_env(),
        )


@dataclass
class BreedApiConfig:
    """TheCatAPI breed lookup settings."""

    url: str = DEFAULT_CAT_API_URL
    api_key: str | None = None
    timeout_seconds: float = 10.0
    cache_ttl_seconds: int = 3600

    @classmethod
    def from_env(cls) -> BreedApiConfig:
        return cls(
            url=os.environ.get("CAT_API_URL", DEFAULT_CAT_API_URL).rstrip("/"),
            api_key=os.environ.get("CAT_API_KEY") or None,
            timeout_seconds=_env_float("CAT_API_TIMEOUT", 10.0),
            cache_ttl_seconds=_env_int("BREED_CACHE_TTL_SECONDS", 3600),
        )


@dataclass
class ApiConfig:
    """HTTP entry point settings."""

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080
    workers: int = 1
    access_log: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> ApiConfig:
        return cls(
            host=os.environ.get("API_HOST", "0.0.0.0"),  # noqa: S104
            port=_env_int("API_PORT", 8080),
            workers=_env_int("API_WORKERS", 1),
            access_log=_env_flag("API_ACCESS_LOG"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )


@dataclass
class Config:
    """Everything the service reads from the environment."""

    supabase: SupabaseConfig | None
    database: DatabaseConfig = field(default_factory=DatabaseConfig.from_env)
    breeds: BreedApiConfig = field(default_factory=BreedApiConfig.from_env)
    api: ApiConfig = field(default_factory=ApiConfig.from_env)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration; Supabase credentials are read only for that backend.

        Raises:
            ValueError: DB_BACKEND=supabase without SUPABASE_URL/SUPABASE_SERVICE_KEY
        """
        database = DatabaseConfig.from_env()
        supabase = SupabaseConfig.from_env() if database.backend == "supabase" else None
        return cls(
            supabase=supabase,
            database=database,
            breeds=BreedApiConfig.from_env(),
            api=ApiConfig.from_env(),
        )


_config: Config | None = None


def get_config() -> Config:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = Config.from_env()
        logger.debug("Loaded configuration (backend=%s)", _config.database.backend)
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() rereads env (tests)."""
    global _config
    _config = None
