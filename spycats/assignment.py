"""Assignment coordinator for the Spy Cat Agency.

The only code path that binds a cat to a mission. Binding and the cat's
``available -> on_mission`` flip run inside one stored function, and the
flip is a conditional UPDATE whose affected-row count decides the winner
of concurrent requests for the same cat.
"""

import logging

from .db import DatabaseClient, get_db
from .errors import AgencyError, ErrorKind, store_errors
from .missions import MAX_TARGETS, MIN_TARGETS, Mission, MissionStore, NewTarget

logger = logging.getLogger(__name__)


def check_target_count(count: int) -> None:
    """Reject a mission target list outside [MIN_TARGETS, MAX_TARGETS]."""
    if not MIN_TARGETS <= count <= MAX_TARGETS:
        raise AgencyError.invalid(
            "invalid_target_count",
            f"a mission must have between {MIN_TARGETS} and {MAX_TARGETS} targets, got {count}",
        )


class AssignmentCoordinator:
    """Binds cats to missions and guards mission lifecycle against bindings."""

    def __init__(
        self,
        db: DatabaseClient | None = None,
        missions: MissionStore | None = None,
    ):
        self._db = db
        self._missions = missions

    @property
    def db(self) -> DatabaseClient:
        if self._db is None:
            self._db = get_db()
        return self._db

    @property
    def missions(self) -> MissionStore:
        if self._missions is None:
            self._missions = MissionStore(self._db)
        return self._missions

    async def create_mission(
        self,
        targets: list[NewTarget],
        cat_id: int | None = None,
    ) -> Mission:
        """Create a mission with 1-3 targets, optionally bound to a cat.

        Args:
            targets: Initial targets, persisted in order
            cat_id: Cat to bind at creation (same guarded flip as assign_cat)

        Returns:
            The created mission with its targets

        Raises:
            AgencyError: INVALID_INPUT for a bad target count; NOT_FOUND or
                CONFLICT when the cat cannot be claimed (nothing is persisted)
        """
        check_target_count(len(targets))
        mission = await self.missions.create(targets, cat_id=cat_id)
        logger.info(
            "Created mission %s with %d targets (cat=%s)",
            mission.id,
            len(mission.targets),
            cat_id,
        )
        return mission

    async def assign_cat(self, mission_id: int, cat_id: int) -> Mission:
        """Bind an available cat to an unassigned mission.

        Both writes commit together or not at all. Of two concurrent calls
        for the same cat, exactly one succeeds; the other gets CONFLICT
        ``cat_not_available``. A lost race is reported, never retried.

        Raises:
            AgencyError: NOT_FOUND for a missing mission or cat; CONFLICT
                when the cat is not available or the mission already has one
        """
        with store_errors("assign_cat_to_mission"):
            result = await self.db.rpc(
                "assign_cat_to_mission",
                {"p_mission_id": mission_id, "p_cat_id": cat_id},
            )

        if not result.get("success"):
            error = AgencyError.from_result(result)
            if error.kind is ErrorKind.CONFLICT:
                logger.info(
                    "Assignment of cat %s to mission %s rejected: %s",
                    cat_id,
                    mission_id,
                    error.reason,
                )
            raise error

        logger.info("Assigned cat %s to mission %s", cat_id, mission_id)
        return await self.missions.get(mission_id)

    async def delete_mission(self, mission_id: int) -> None:
        """Delete a mission that no cat is bound to.

        Raises:
            AgencyError: CONFLICT if a cat is bound, NOT_FOUND if absent
        """
        await self.missions.delete(mission_id)


# Global coordinator instance
_assignment_coordinator: AssignmentCoordinator | None = None


def get_assignment_coordinator() -> AssignmentCoordinator:
    """Get the global assignment coordinator instance."""
    global _assignment_coordinator
    if _assignment_coordinator is None:
        _assignment_coordinator = AssignmentCoordinator()
    return _assignment_coordinator
