"""Mission store for the Spy Cat Agency.

Owns missions and the 1-3 targets embedded in each. Creation of a mission
with its initial targets is a single stored-function call (one
transaction); every other write here is a single-row or single-statement
conditional write.

The coordinators check target counts before calling the store; the
``create_mission`` function checks them again for direct callers.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .db import DatabaseClient, get_db, parse_timestamp
from .errors import AgencyError, ErrorKind, store_errors

logger = logging.getLogger(__name__)

MIN_TARGETS = 1
MAX_TARGETS = 3

TARGET_ORDER = "order=created_at.asc,id.asc"


@dataclass(frozen=True)
class NewTarget:
    """A target to be created, either with its mission or added later."""

    name: str
    country: str
    notes: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "country": self.country, "notes": self.notes}


@dataclass
class Target:
    """A target within a mission."""

    id: int
    mission_id: int
    name: str
    country: str
    notes: str = ""
    completed: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Target":
        return cls(
            id=int(data["id"]),
            mission_id=int(data["mission_id"]),
            name=data["name"],
            country=data["country"],
            notes=data.get("notes") or "",
            completed=bool(data.get("completed", False)),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "mission_id": self.mission_id,
            "name": self.name,
            "country": self.country,
            "notes": self.notes,
            "completed": self.completed,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def all_completed(targets: list[Target]) -> bool:
    """True when there is at least one target and every target is completed."""
    return bool(targets) and all(t.completed for t in targets)


@dataclass
class Mission:
    """A mission, optionally bound to one cat."""

    id: int
    cat_id: int | None = None
    completed: bool = False
    targets: list[Target] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        targets: list[dict[str, Any]] | None = None,
    ) -> "Mission":
        cat_id = data.get("cat_id")
        return cls(
            id=int(data["id"]),
            cat_id=int(cat_id) if cat_id is not None else None,
            completed=bool(data.get("completed", False)),
            targets=[Target.from_dict(t) for t in (targets or [])],
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cat_id": self.cat_id,
            "completed": self.completed,
            "targets": [t.to_dict() for t in self.targets],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class MissionStore:
    """Persistence operations for missions and their targets."""

    def __init__(self, db: DatabaseClient | None = None):
        self._db = db

    @property
    def db(self) -> DatabaseClient:
        if self._db is None:
            self._db = get_db()
        return self._db

    async def create(
        self,
        targets: list[NewTarget],
        cat_id: int | None = None,
    ) -> Mission:
        """Insert a mission and all of its targets in one transaction.

        When ``cat_id`` is given, the cat is claimed with the same guarded
        status flip used by assignment, inside the same transaction.

        Raises:
            AgencyError: NOT_FOUND/CONFLICT when the cat cannot be claimed
        """
        with store_errors("create_mission"):
            result = await self.db.rpc(
                "create_mission",
                {
                    "p_targets": [t.to_dict() for t in targets],
                    "p_cat_id": cat_id,
                },
            )
        if not result.get("success"):
            raise AgencyError.from_result(result)
        return Mission.from_dict(result["mission"], result.get("targets") or [])

    async def get(self, mission_id: int) -> Mission:
        """Fetch a mission with its targets in creation order.

        Raises:
            AgencyError: NOT_FOUND if no such mission exists
        """
        with store_errors("get_mission"):
            rows = await self.db.query("missions", f"id=eq.{mission_id}")
            if not rows:
                raise AgencyError.not_found("mission")
            targets = await self.db.query(
                "targets", f"mission_id=eq.{mission_id}&{TARGET_ORDER}"
            )
        return Mission.from_dict(rows[0], targets)

    async def list_missions(self) -> list[Mission]:
        """List all missions with their targets, newest mission first.

        Targets come from one unfiltered query; targets of a mission created
        between the two reads are dropped.
        """
        with store_errors("list_missions"):
            rows = await self.db.query("missions", "order=created_at.desc,id.desc")
            if not rows:
                return []
            target_rows = await self.db.query("targets", TARGET_ORDER)

        by_mission: dict[int, list[dict[str, Any]]] = {}
        for t in target_rows:
            by_mission.setdefault(int(t["mission_id"]), []).append(t)
        return [Mission.from_dict(r, by_mission.get(int(r["id"]), [])) for r in rows]

    async def update(self, mission_id: int, **fields: Any) -> Mission:
        """Rewrite ``cat_id`` and/or ``completed`` on a mission.

        Binding a cat outside ``AssignmentCoordinator`` skips the guarded
        status flip; callers other than the coordinators only touch
        ``completed``.

        Raises:
            AgencyError: NOT_FOUND if no such mission exists
        """
        unknown = set(fields) - {"cat_id", "completed"}
        if unknown:
            raise ValueError(f"Unsupported mission fields: {sorted(unknown)}")

        with store_errors("update_mission"):
            rows = await self.db.update("missions", {"id": mission_id}, fields)
            if not rows:
                raise AgencyError.not_found("mission")
            targets = await self.db.query(
                "targets", f"mission_id=eq.{mission_id}&{TARGET_ORDER}"
            )
        return Mission.from_dict(rows[0], targets)

    async def delete(self, mission_id: int) -> None:
        """Delete an unassigned mission and, by cascade, its targets.

        The "not assigned" check is part of the DELETE statement itself, so
        an assignment landing concurrently either wins (delete fails) or
        loses (it finds no mission).

        Raises:
            AgencyError: CONFLICT if the mission is assigned to a cat,
                NOT_FOUND if it does not exist
        """
        with store_errors("delete_mission"):
            deleted = await self.db.delete("missions", {"id": mission_id, "cat_id": None})
            if deleted:
                logger.info("Deleted mission %s", mission_id)
                return
            exists = await self.db.query("missions", f"id=eq.{mission_id}", select="id")
        if exists:
            raise AgencyError(ErrorKind.CONFLICT, "mission_assigned")
        raise AgencyError.not_found("mission")

    # ------------------------------------------------------------------ #
    # Targets
    # ------------------------------------------------------------------ #

    async def get_targets(self, mission_id: int) -> list[Target]:
        """List a mission's targets in creation order."""
        with store_errors("get_targets"):
            rows = await self.db.query(
                "targets", f"mission_id=eq.{mission_id}&{TARGET_ORDER}"
            )
        return [Target.from_dict(r) for r in rows]

    async def mark_target_completed(self, target_id: int) -> Target:
        """Set ``completed = true`` on a target (idempotent).

        Raises:
            AgencyError: NOT_FOUND if no such target exists
        """
        with store_errors("complete_target"):
            rows = await self.db.update("targets", {"id": target_id}, {"completed": True})
        if not rows:
            raise AgencyError.not_found("target")
        return Target.from_dict(rows[0])

    async def delete_target(self, target_id: int) -> None:
        """Delete a target that is not completed.

        Raises:
            AgencyError: CONFLICT if the target is completed,
                NOT_FOUND if it does not exist
        """
        with store_errors("delete_target"):
            deleted = await self.db.delete("targets", {"id": target_id, "completed": False})
            if deleted:
                return
            exists = await self.db.query("targets", f"id=eq.{target_id}", select="id")
        if exists:
            raise AgencyError.from_reason("target_completed")
        raise AgencyError.not_found("target")


# Global store instance
_mission_store: MissionStore | None = None


def get_mission_store() -> MissionStore:
    """Get the global mission store instance."""
    global _mission_store
    if _mission_store is None:
        _mission_store = MissionStore()
    return _mission_store
