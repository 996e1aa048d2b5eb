"""asyncpg backend (DB_BACKEND=postgres).

For running against a plain PostgreSQL server without PostgREST in front of
it. The functions in ``supabase/migrations`` must be installed in that
database; ``rpc`` calls them with named arguments.

Install with ``pip install 'spy-cats-agency[postgres]'``.
"""

import json
import re
from typing import Any

import asyncpg

from .config import PostgresConfig

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _coerce_filter_value(val: str) -> Any:
    """Turn a PostgREST filter operand into the Python type asyncpg expects.

    Filter operands here are ids, booleans and status strings.
    """
    lowered = val.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    try:
        return int(val)
    except ValueError:
        return val


def _validate_identifier(identifier: str, *, allow_qualified: bool = False) -> str:
    parts = identifier.split(".") if allow_qualified else [identifier]
    if any(not _IDENT_RE.match(part) for part in parts):
        raise ValueError(f"Unsafe identifier: {identifier}")
    return identifier


def _validate_select_clause(select: str) -> str:
    if select.strip() == "*":
        return "*"
    columns = [col.strip() for col in select.split(",")]
    for col in columns:
        _validate_identifier(col, allow_qualified=True)
    return ", ".join(columns)


def _where_clause(match: dict[str, Any], start: int = 1) -> tuple[str, list[Any]]:
    """AND together ``col = $n`` terms; a None value becomes ``col IS NULL``."""
    terms: list[str] = []
    values: list[Any] = []
    for col, val in match.items():
        _validate_identifier(col)
        if val is None:
            terms.append(f"{col} IS NULL")
            continue
        values.append(val)
        terms.append(f"{col} = ${start + len(values) - 1}")
    return " AND ".join(terms), values


def _order_clause(spec: str) -> str:
    terms = []
    for term in spec.split(","):
        col, _, direction = term.partition(".")
        _validate_identifier(col)
        terms.append(f"{col} {'DESC' if direction.startswith('desc') else 'ASC'}")
    return " ORDER BY " + ", ".join(terms)


def _translate_filters(query_params: str) -> tuple[str, list[Any]]:
    """Translate ``col=op.operand&order=...&limit=n`` into SQL suffix + args."""
    terms: list[str] = []
    values: list[Any] = []
    order = ""
    limit = ""

    for part in filter(None, query_params.split("&")):
        key, _, expression = part.partition("=")
        if key == "order":
            order = _order_clause(expression)
            continue
        if key == "limit":
            limit = f" LIMIT {int(expression)}"
            continue

        col = _validate_identifier(key)
        op, _, operand = expression.partition(".")
        if op in ("eq", "neq"):
            values.append(_coerce_filter_value(operand))
            sign = "=" if op == "eq" else "<>"
            terms.append(f"{col} {sign} ${len(values)}")
        elif op == "is":
            if operand not in ("null", "true", "false"):
                raise ValueError(f"Unsupported IS filter: {part}")
            terms.append(f"{col} IS {operand.upper()}")
        elif op == "in":
            items = [v.strip().strip('"') for v in operand.strip("()").split(",") if v.strip()]
            first = len(values) + 1
            values.extend(_coerce_filter_value(v) for v in items)
            placeholders = ", ".join(f"${first + i}" for i in range(len(items)))
            terms.append(f"{col} IN ({placeholders})" if items else "FALSE")
        else:
            raise ValueError(f"Unsupported filter operator: {op}")

    where = f" WHERE {' AND '.join(terms)}" if terms else ""
    return where + order + limit, values


async def _init_connection(conn: asyncpg.Connection) -> None:
    # Stored functions take and return jsonb; exchange it as Python objects.
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


class DirectPostgresClient:
    """DatabaseClient over an asyncpg connection pool."""

    def __init__(self, config: PostgresConfig | None = None):
        self._config = config or PostgresConfig()
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self._config.dsn,
                min_size=self._config.pool_min,
                max_size=self._config.pool_max,
                init=_init_connection,
            )
        return self._pool

    async def rpc(self, function_name: str, params: dict[str, Any]) -> Any:
        """Run ``SELECT fn(p_a := $1, p_b := $2, ...)`` and return its value."""
        _validate_identifier(function_name, allow_qualified=True)
        args = ", ".join(
            f"{_validate_identifier(name)} := ${i}" for i, name in enumerate(params, start=1)
        )
        pool = await self._get_pool()
        return await pool.fetchval(f"SELECT {function_name}({args})", *params.values())

    async def query(
        self,
        table: str,
        query_params: str | None = None,
        select: str = "*",
    ) -> list[dict[str, Any]]:
        _validate_identifier(table, allow_qualified=True)
        suffix, values = _translate_filters(query_params or "")
        sql = f"SELECT {_validate_select_clause(select)} FROM {table}{suffix}"
        pool = await self._get_pool()
        return [dict(row) for row in await pool.fetch(sql, *values)]

    async def insert(
        self,
        table: str,
        data: dict[str, Any],
        return_data: bool = True,
    ) -> dict[str, Any]:
        _validate_identifier(table, allow_qualified=True)
        columns = ", ".join(_validate_identifier(col) for col in data)
        placeholders = ", ".join(f"${i}" for i in range(1, len(data) + 1))
        sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        pool = await self._get_pool()
        if not return_data:
            await pool.execute(sql, *data.values())
            return {}
        row = await pool.fetchrow(sql + " RETURNING *", *data.values())
        return dict(row) if row else {}

    async def update(
        self,
        table: str,
        match: dict[str, Any],
        data: dict[str, Any],
        return_data: bool = True,
    ) -> list[dict[str, Any]]:
        """One ``UPDATE ... WHERE`` statement; extra match columns guard it."""
        _validate_identifier(table, allow_qualified=True)
        assignments = ", ".join(
            f"{_validate_identifier(col)} = ${i}" for i, col in enumerate(data, start=1)
        )
        where, where_values = _where_clause(match, start=len(data) + 1)
        sql = f"UPDATE {table} SET {assignments} WHERE {where}"
        values = [*data.values(), *where_values]
        pool = await self._get_pool()
        if not return_data:
            await pool.execute(sql, *values)
            return []
        return [dict(row) for row in await pool.fetch(sql + " RETURNING *", *values)]

    async def delete(self, table: str, match: dict[str, Any]) -> list[dict[str, Any]]:
        _validate_identifier(table, allow_qualified=True)
        where, values = _where_clause(match)
        pool = await self._get_pool()
        rows = await pool.fetch(f"DELETE FROM {table} WHERE {where} RETURNING *", *values)
        return [dict(row) for row in rows]

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
