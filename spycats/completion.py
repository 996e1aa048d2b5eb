"""Completion coordinator for the Spy Cat Agency.

Mutates target and mission completion state. Completing the last open target
of a mission cascades into ``mission.completed = true``; the cascade is a
plain re-read followed by an idempotent write, so concurrent cascades for the
same mission are harmless.

Cat availability is never touched here: a cat stays ``on_mission`` after its
mission completes.
"""

import logging
from dataclasses import dataclass
from typing import Any

from .db import DatabaseClient, get_db
from .errors import AgencyError, store_errors
from .missions import Mission, MissionStore, NewTarget, Target, all_completed

logger = logging.getLogger(__name__)


@dataclass
class TargetCompletion:
    """Result of completing a target.

    ``target`` is always the committed, completed target. ``cascade_error``
    is set when the follow-up mission write failed; the target stays
    completed either way.
    """

    target: Target
    mission_completed: bool = False
    cascade_error: AgencyError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.to_dict(),
            "mission_completed": self.mission_completed,
            "cascade_error": self.cascade_error.to_dict() if self.cascade_error else None,
        }


class CompletionCoordinator:
    """Service for target mutations and mission completion."""

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

    async def add_target(self, mission_id: int, target: NewTarget) -> Target:
        """Add a target to an open mission with fewer than 3 targets.

        The completed and count checks are evaluated under the mission's row
        lock in the same transaction as the insert.

        Raises:
            AgencyError: NOT_FOUND for a missing mission; CONFLICT when the
                mission is completed or already has 3 targets
        """
        with store_errors("add_target"):
            result = await self.db.rpc(
                "add_target",
                {
                    "p_mission_id": mission_id,
                    "p_name": target.name,
                    "p_country": target.country,
                    "p_notes": target.notes,
                },
            )
        if not result.get("success"):
            raise AgencyError.from_result(result)
        return Target.from_dict(result["target"])

    async def update_target_notes(self, target_id: int, notes: str) -> Target:
        """Rewrite a target's notes.

        Raises:
            AgencyError: NOT_FOUND for a missing target; CONFLICT when the
                target or its mission is completed
        """
        with store_errors("update_target_notes"):
            result = await self.db.rpc(
                "update_target_notes",
                {"p_target_id": target_id, "p_notes": notes},
            )
        if not result.get("success"):
            raise AgencyError.from_result(result)
        return Target.from_dict(result["target"])

    async def complete_target(self, target_id: int) -> TargetCompletion:
        """Mark a target completed and cascade into its mission.

        Completing an already-completed target is a harmless rewrite. A
        failure after the target write (re-reading siblings or writing the
        mission) is returned in ``cascade_error``, not raised.

        Raises:
            AgencyError: NOT_FOUND for a missing target, INTERNAL when the
                target write itself fails
        """
        target = await self.missions.mark_target_completed(target_id)
        completion = TargetCompletion(target=target)

        try:
            siblings = await self.missions.get_targets(target.mission_id)
            if all_completed(siblings):
                await self.missions.update(target.mission_id, completed=True)
                completion.mission_completed = True
                logger.info(
                    "All targets of mission %s completed; mission marked completed",
                    target.mission_id,
                )
        except AgencyError as exc:
            logger.warning(
                "Target %s completed but mission %s cascade failed: %s",
                target_id,
                target.mission_id,
                exc.message,
                exc_info=True,
            )
            completion.cascade_error = exc

        return completion

    async def delete_target(self, target_id: int) -> None:
        """Delete a target that is not completed.

        Does not check the mission's remaining target count.

        Raises:
            AgencyError: CONFLICT if the target is completed, NOT_FOUND if absent
        """
        await self.missions.delete_target(target_id)

    async def complete_mission(self, mission_id: int, completed: bool = True) -> Mission:
        """Manually set or clear a mission's completed flag.

        Independent of target state; nothing is cascaded onto targets.

        Raises:
            AgencyError: NOT_FOUND if no such mission exists
        """
        mission = await self.missions.update(mission_id, completed=completed)
        logger.info("Mission %s completed flag set to %s", mission_id, completed)
        return mission


# Global coordinator instance
_completion_coordinator: CompletionCoordinator | None = None


def get_completion_coordinator() -> CompletionCoordinator:
    """Get the global completion coordinator instance."""
    global _completion_coordinator
    if _completion_coordinator is None:
        _completion_coordinator = CompletionCoordinator()
    return _completion_coordinator
