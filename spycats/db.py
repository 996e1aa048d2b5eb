"""Storage access for the Spy Cat Agency.

Every service talks to storage through the ``DatabaseClient`` protocol. The
backend is chosen by ``DB_BACKEND``:

- ``supabase``: ``SupabaseClient``, PostgREST over httpx (default)
- ``postgres``: ``DirectPostgresClient`` in ``db_postgres``, asyncpg pool
- ``memory``: ``InMemoryClient`` in ``db_memory``, process-local tables

Services either receive a client explicitly (tests) or fall back to the
lazily created global one from ``get_db()``.

``update`` and ``delete`` answer with the rows they actually touched. A write
guarded by extra ``match`` columns, such as ``{"id": 7, "cat_id": None}``,
took effect exactly when that list is non-empty. ``None`` in a match means
``IS NULL``.
"""

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import httpx

from .config import SupabaseConfig, get_config

RETURN_ROWS = "return=representation"


@runtime_checkable
class DatabaseClient(Protocol):
    """Operations every storage backend provides."""

    async def rpc(self, function_name: str, params: dict[str, Any]) -> Any:
        """Run a stored function as one transaction and return its jsonb result."""
        ...

    async def query(
        self,
        table: str,
        query_params: str | None = None,
        select: str = "*",
    ) -> list[dict[str, Any]]:
        """Read rows using PostgREST filter syntax."""
        ...

    async def insert(
        self,
        table: str,
        data: dict[str, Any],
        return_data: bool = True,
    ) -> dict[str, Any]:
        ...

    async def update(
        self,
        table: str,
        match: dict[str, Any],
        data: dict[str, Any],
        return_data: bool = True,
    ) -> list[dict[str, Any]]:
        """Write ``data`` to every row matching ``match``; return those rows."""
        ...

    async def delete(self, table: str, match: dict[str, Any]) -> list[dict[str, Any]]:
        """Remove every row matching ``match``; return the removed rows."""
        ...

    async def close(self) -> None:
        ...


def parse_timestamp(val: Any) -> datetime | None:
    """Decode a timestamp column from either a datetime or an ISO string."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(str(val).replace("Z", "+00:00"))


def format_filter(column: str, value: Any) -> str:
    """Render one equality/null match as a PostgREST filter."""
    if value is None:
        return f"{column}=is.null"
    if isinstance(value, bool):
        return f"{column}=eq.{str(value).lower()}"
    return f"{column}=eq.{value}"


def match_filters(match: dict[str, Any]) -> str:
    return "&".join(format_filter(column, value) for column, value in match.items())


class SupabaseClient:
    """PostgREST backend (DB_BACKEND=supabase).

    Stored functions are reached at ``/rpc/<name>``; tables at ``/<table>``,
    both under ``SUPABASE_REST_PREFIX``. Writes ask for
    ``Prefer: return=representation`` so guarded writes report what they hit.
    """

    def __init__(self, config: SupabaseConfig | None = None):
        self._config = config
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> SupabaseConfig:
        if self._config is None:
            supabase = get_config().supabase
            if supabase is None:
                raise ValueError("Supabase configuration is not available")
            self._config = supabase
        return self._config

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    def _url(self, path: str, query: str | None = None) -> str:
        url = f"{self.config.url}{self.config.rest_prefix}/{path}"
        return f"{url}?{query}" if query else url

    async def _send(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        headers = {
            "apikey": self.config.service_key,
            "Authorization": f"Bearer {self.config.service_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        response = await self.client.request(method, url, headers=headers, json=json)
        response.raise_for_status()
        return response

    async def rpc(self, function_name: str, params: dict[str, Any]) -> Any:
        """POST to ``/rpc/<function_name>``.

        Raises:
            httpx.HTTPStatusError: When PostgREST rejects the call
        """
        response = await self._send("POST", self._url(f"rpc/{function_name}"), json=params)
        return response.json()

    async def query(
        self,
        table: str,
        query_params: str | None = None,
        select: str = "*",
    ) -> list[dict[str, Any]]:
        query = f"select={select}"
        if query_params:
            query += f"&{query_params}"
        response = await self._send("GET", self._url(table, query))
        return response.json()  # type: ignore[no-any-return]

    async def insert(
        self,
        table: str,
        data: dict[str, Any],
        return_data: bool = True,
    ) -> dict[str, Any]:
        response = await self._send(
            "POST",
            self._url(table),
            json=data,
            prefer=RETURN_ROWS if return_data else None,
        )
        if not return_data:
            return {}
        rows = response.json()
        return rows[0] if rows else {}

    async def update(
        self,
        table: str,
        match: dict[str, Any],
        data: dict[str, Any],
        return_data: bool = True,
    ) -> list[dict[str, Any]]:
        response = await self._send(
            "PATCH",
            self._url(table, match_filters(match)),
            json=data,
            prefer=RETURN_ROWS if return_data else None,
        )
        return response.json() if return_data else []

    async def delete(self, table: str, match: dict[str, Any]) -> list[dict[str, Any]]:
        response = await self._send(
            "DELETE", self._url(table, match_filters(match)), prefer=RETURN_ROWS
        )
        # 204 when PostgREST is configured to ignore Prefer
        return response.json() if response.content else []

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_db_client() -> DatabaseClient:
    """Build the client selected by ``DB_BACKEND``."""
    config = get_config()
    backend = config.database.backend

    if backend == "supabase":
        return SupabaseClient(config.supabase)
    if backend == "postgres":
        try:
            from .db_postgres import DirectPostgresClient
        except ImportError as e:
            raise ImportError(
                "DB_BACKEND=postgres needs asyncpg: pip install 'spy-cats-agency[postgres]'"
            ) from e
        return DirectPostgresClient(config.database.postgres)
    if backend == "memory":
        from .db_memory import InMemoryClient

        return InMemoryClient()
    raise ValueError(f"Unknown database backend: {backend!r}")


_db: DatabaseClient | None = None


def get_db() -> DatabaseClient:
    """Return the process-wide client, creating it on first use."""
    global _db
    if _db is None:
        _db = create_db_client()
    return _db


async def close_db() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


def reset_db() -> None:
    """Forget the global client without closing it (tests)."""
    global _db
    _db = None
