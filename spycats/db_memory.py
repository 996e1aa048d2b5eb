"""In-memory DatabaseClient for development and tests.

Holds the ``cats``, ``missions`` and ``targets`` tables in process memory and
mirrors the behaviour of ``supabase/migrations/001_spy_cats_schema.sql``:
column defaults, check/unique/foreign-key constraints, ``ON DELETE SET NULL``
on ``missions.cat_id``, ``ON DELETE CASCADE`` on ``targets.mission_id``, the
``updated_at`` trigger, and the stored functions called through ``rpc()``.

Every call runs under a single ``asyncio.Lock``, which gives each call the
all-or-nothing behaviour of one PostgreSQL transaction.
"""

import asyncio
import copy
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from .db import format_filter

CAT_STATUSES = ("available", "on_mission")

TABLE_DEFAULTS: dict[str, dict[str, Any]] = {
    "cats": {"status": "available"},
    "missions": {"cat_id": None, "completed": False},
    "targets": {"notes": "", "completed": False},
}


class IntegrityError(Exception):
    """A write violated a table constraint."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _render(value: Any) -> str:
    """Render a stored value the way it appears in a PostgREST filter."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def _parse_filter(column: str, expression: str) -> Callable[[dict[str, Any]], bool]:
    op, _, operand = expression.partition(".")
    if op == "eq":
        return lambda row: row.get(column) is not None and _render(row.get(column)) == operand
    if op == "neq":
        return lambda row: row.get(column) is not None and _render(row.get(column)) != operand
    if op == "is":
        if operand not in ("null", "true", "false"):
            raise ValueError(f"Unsupported IS operand: {operand}")
        return lambda row: _render(row.get(column)) == operand
    if op == "in":
        values = {v.strip().strip('"') for v in operand.strip("()").split(",") if v.strip()}
        return lambda row: row.get(column) is not None and _render(row.get(column)) in values
    raise ValueError(f"Unsupported filter operator: {op}")


def _sort_rows(rows: list[dict[str, Any]], order: str) -> list[dict[str, Any]]:
    # Apply the keys last-to-first so the first key dominates (stable sort).
    for part in reversed(order.split(",")):
        column, _, direction = part.strip().partition(".")
        rows.sort(
            key=lambda r, c=column: (r.get(c) is None, r.get(c)),
            reverse=direction.startswith("desc"),
        )
    return rows


class InMemoryClient:
    """Process-local DatabaseClient implementation (DB_BACKEND=memory)."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[int, dict[str, Any]]] = {
            name: {} for name in TABLE_DEFAULTS
        }
        self._next_id: dict[str, int] = {name: 1 for name in TABLE_DEFAULTS}
        self._lock = asyncio.Lock()
        self._functions: dict[str, Callable[..., dict[str, Any]]] = {
            "create_mission": self._create_mission,
            "assign_cat_to_mission": self._assign_cat_to_mission,
            "add_target": self._add_target,
            "update_target_notes": self._update_target_notes,
        }

    # ------------------------------------------------------------------ #
    # Table primitives (caller holds the lock)
    # ------------------------------------------------------------------ #

    def _table(self, table: str) -> dict[int, dict[str, Any]]:
        if table not in self._tables:
            raise ValueError(f"Unknown table: {table}")
        return self._tables[table]

    def _check_row(self, table: str, row: dict[str, Any]) -> None:
        if table == "cats":
            if row.get("status") not in CAT_STATUSES:
                raise IntegrityError(f"invalid cat status: {row.get('status')!r}")
            if row.get("salary") is None or row["salary"] <= 0:
                raise IntegrityError("cats.salary must be greater than 0")
            if row.get("years_of_experience") is None or row["years_of_experience"] < 0:
                raise IntegrityError("cats.years_of_experience must not be negative")
        elif table == "missions":
            cat_id = row.get("cat_id")
            if cat_id is not None:
                if cat_id not in self._tables["cats"]:
                    raise IntegrityError(f"missions.cat_id references missing cat {cat_id}")
                for other in self._tables["missions"].values():
                    if other["id"] != row["id"] and other.get("cat_id") == cat_id:
                        raise IntegrityError(f"cat {cat_id} is already bound to a mission")
        elif table == "targets":
            if row.get("mission_id") not in self._tables["missions"]:
                raise IntegrityError(
                    f"targets.mission_id references missing mission {row.get('mission_id')}"
                )

    def _insert_row(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        rows = self._table(table)
        now = _now()
        row = {**TABLE_DEFAULTS[table], **data}
        row["id"] = self._next_id[table]
        row["created_at"] = now
        row["updated_at"] = now
        self._check_row(table, row)
        self._next_id[table] += 1
        rows[row["id"]] = row
        return row

    def _update_row(self, table: str, row_id: int, data: dict[str, Any]) -> dict[str, Any]:
        rows = self._table(table)
        updated = {**rows[row_id], **data, "id": row_id, "updated_at": _now()}
        self._check_row(table, updated)
        rows[row_id] = updated
        return updated

    def _matching(self, table: str, match: dict[str, Any]) -> list[dict[str, Any]]:
        predicates = [
            _parse_filter(column, format_filter(column, value).split("=", 1)[1])
            for column, value in match.items()
        ]
        return [
            row
            for row in self._table(table).values()
            if all(p(row) for p in predicates)
        ]

    def _delete_row(self, table: str, row_id: int) -> dict[str, Any]:
        row = self._table(table).pop(row_id)
        if table == "cats":
            for mission in self._tables["missions"].values():
                if mission.get("cat_id") == row_id:
                    mission["cat_id"] = None
                    mission["updated_at"] = _now()
        elif table == "missions":
            for target_id in [
                t["id"] for t in self._tables["targets"].values() if t["mission_id"] == row_id
            ]:
                del self._tables["targets"][target_id]
        return row

    # ------------------------------------------------------------------ #
    # DatabaseClient protocol
    # ------------------------------------------------------------------ #

    async def rpc(self, function_name: str, params: dict[str, Any]) -> Any:
        function = self._functions.get(function_name)
        if function is None:
            raise ValueError(f"Unknown function: {function_name}")
        async with self._lock:
            snapshot = copy.deepcopy((self._tables, self._next_id))
            try:
                return copy.deepcopy(function(**params))
            except Exception:
                self._tables, self._next_id = snapshot
                raise

    async def query(
        self,
        table: str,
        query_params: str | None = None,
        select: str = "*",
    ) -> list[dict[str, Any]]:
        async with self._lock:
            rows = list(self._table(table).values())
            order: str | None = None
            limit: int | None = None
            for part in (query_params or "").split("&"):
                if not part:
                    continue
                key, _, value = part.partition("=")
                if key == "order":
                    order = value
                elif key == "limit":
                    limit = int(value)
                elif key not in ("select", "offset"):
                    predicate = _parse_filter(key, value)
                    rows = [r for r in rows if predicate(r)]

            if order:
                rows = _sort_rows(rows, order)
            if limit is not None:
                rows = rows[:limit]

            if select.strip() == "*":
                return [copy.deepcopy(r) for r in rows]
            columns = [c.strip() for c in select.split(",")]
            return [{c: copy.deepcopy(r.get(c)) for c in columns} for r in rows]

    async def insert(
        self,
        table: str,
        data: dict[str, Any],
        return_data: bool = True,
    ) -> dict[str, Any]:
        async with self._lock:
            row = self._insert_row(table, data)
            return copy.deepcopy(row) if return_data else {}

    async def update(
        self,
        table: str,
        match: dict[str, Any],
        data: dict[str, Any],
        return_data: bool = True,
    ) -> list[dict[str, Any]]:
        async with self._lock:
            rows = self._matching(table, match)
            # Validate every row before writing any of them.
            for row in rows:
                self._check_row(table, {**row, **data})
            updated = [self._update_row(table, row["id"], data) for row in rows]
            return copy.deepcopy(updated) if return_data else []

    async def delete(self, table: str, match: dict[str, Any]) -> list[dict[str, Any]]:
        async with self._lock:
            doomed = self._matching(table, match)
            return [copy.deepcopy(self._delete_row(table, row["id"])) for row in doomed]

    async def close(self) -> None:
        return None

    # ------------------------------------------------------------------ #
    # Stored functions (see 001_spy_cats_schema.sql)
    # ------------------------------------------------------------------ #

    def _claim_cat(self, cat_id: int) -> str | None:
        cat = self._tables["cats"].get(cat_id)
        if cat is None:
            return "cat_not_found"
        if cat["status"] != "available":
            return "cat_not_available"
        self._update_row("cats", cat_id, {"status": "on_mission"})
        return None

    def _create_mission(
        self,
        p_targets: list[dict[str, Any]],
        p_cat_id: int | None = None,
    ) -> dict[str, Any]:
        if not 1 <= len(p_targets or []) <= 3:
            return {"success": False, "reason": "invalid_target_count"}

        if p_cat_id is not None:
            reason = self._claim_cat(p_cat_id)
            if reason:
                return {"success": False, "reason": reason}

        mission = self._insert_row("missions", {"cat_id": p_cat_id, "completed": False})
        targets = [
            self._insert_row(
                "targets",
                {
                    "mission_id": mission["id"],
                    "name": t["name"],
                    "country": t["country"],
                    "notes": t.get("notes") or "",
                    "completed": False,
                },
            )
            for t in p_targets
        ]
        return {"success": True, "mission": mission, "targets": targets}

    def _assign_cat_to_mission(self, p_mission_id: int, p_cat_id: int) -> dict[str, Any]:
        mission = self._tables["missions"].get(p_mission_id)
        if mission is None:
            return {"success": False, "reason": "mission_not_found"}
        if mission.get("cat_id") is not None:
            return {
                "success": False,
                "reason": "mission_already_assigned",
                "cat_id": mission["cat_id"],
            }

        reason = self._claim_cat(p_cat_id)
        if reason:
            return {"success": False, "reason": reason}

        mission = self._update_row("missions", p_mission_id, {"cat_id": p_cat_id})
        return {"success": True, "mission": mission}

    def _add_target(
        self,
        p_mission_id: int,
        p_name: str,
        p_country: str,
        p_notes: str | None = "",
    ) -> dict[str, Any]:
        mission = self._tables["missions"].get(p_mission_id)
        if mission is None:
            return {"success": False, "reason": "mission_not_found"}
        if mission["completed"]:
            return {"success": False, "reason": "mission_completed"}

        count = sum(1 for t in self._tables["targets"].values() if t["mission_id"] == p_mission_id)
        if count >= 3:
            return {"success": False, "reason": "target_limit_reached"}

        target = self._insert_row(
            "targets",
            {
                "mission_id": p_mission_id,
                "name": p_name,
                "country": p_country,
                "notes": p_notes or "",
                "completed": False,
            },
        )
        return {"success": True, "target": target}

    def _update_target_notes(self, p_target_id: int, p_notes: str) -> dict[str, Any]:
        target = self._tables["targets"].get(p_target_id)
        if target is None:
            return {"success": False, "reason": "target_not_found"}
        if target["completed"]:
            return {"success": False, "reason": "target_completed"}
        if self._tables["missions"][target["mission_id"]]["completed"]:
            return {"success": False, "reason": "mission_completed"}

        target = self._update_row("targets", p_target_id, {"notes": p_notes})
        return {"success": True, "target": target}
