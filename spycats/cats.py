"""Cat directory for the Spy Cat Agency.

Owns cat records. A cat's ``status`` is read here but only ever flipped
from ``available`` to ``on_mission`` by the assignment coordinator's
guarded write.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from .breeds import BreedLookupError, BreedValidator, get_breed_validator
from .db import DatabaseClient, get_db, parse_timestamp
from .errors import AgencyError, ErrorKind, store_errors

logger = logging.getLogger(__name__)


class CatStatus(str, Enum):
    AVAILABLE = "available"
    ON_MISSION = "on_mission"


@dataclass
class Cat:
    """A spy cat."""

    id: int
    name: str
    years_of_experience: int
    breed: str
    salary: float
    status: CatStatus = CatStatus.AVAILABLE
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cat":
        return cls(
            id=int(data["id"]),
            name=data["name"],
            years_of_experience=int(data["years_of_experience"]),
            breed=data["breed"],
            salary=float(data["salary"]),
            status=CatStatus(data.get("status", CatStatus.AVAILABLE.value)),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "years_of_experience": self.years_of_experience,
            "breed": self.breed,
            "salary": self.salary,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def _check_salary(salary: float) -> None:
    if salary <= 0:
        raise AgencyError.invalid("invalid_salary", "salary must be greater than 0")


class CatDirectory:
    """Service for creating, reading and maintaining cats."""

    def __init__(
        self,
        db: DatabaseClient | None = None,
        breeds: BreedValidator | None = None,
    ):
        self._db = db
        self._breeds = breeds

    @property
    def db(self) -> DatabaseClient:
        if self._db is None:
            self._db = get_db()
        return self._db

    @property
    def breeds(self) -> BreedValidator:
        if self._breeds is None:
            self._breeds = get_breed_validator()
        return self._breeds

    async def create(
        self,
        name: str,
        years_of_experience: int,
        breed: str,
        salary: float,
    ) -> Cat:
        """Register a new cat after validating its breed.

        The breed lookup happens before, and independently of, the insert.
        New cats always start ``available``.

        Raises:
            AgencyError: INVALID_INPUT for bad fields or an unknown breed,
                INTERNAL when the breed lookup or the store fails
        """
        if years_of_experience < 0:
            raise AgencyError.invalid(
                "invalid_experience", "years of experience cannot be negative"
            )
        _check_salary(salary)

        try:
            valid = await self.breeds.is_valid_breed(breed)
        except BreedLookupError as exc:
            raise AgencyError(
                ErrorKind.INTERNAL, "breed_lookup_failed", f"failed to validate breed: {exc}"
            ) from exc
        if not valid:
            raise AgencyError.invalid("invalid_breed", f"invalid cat breed: {breed}")

        with store_errors("create_cat"):
            row = await self.db.insert(
                "cats",
                {
                    "name": name,
                    "years_of_experience": years_of_experience,
                    "breed": breed,
                    "salary": salary,
                },
            )
        return Cat.from_dict(row)

    async def get(self, cat_id: int) -> Cat:
        """Fetch a cat by ID.

        Raises:
            AgencyError: NOT_FOUND if no such cat exists
        """
        with store_errors("get_cat"):
            rows = await self.db.query("cats", f"id=eq.{cat_id}")
        if not rows:
            raise AgencyError.not_found("cat")
        return Cat.from_dict(rows[0])

    async def list_cats(self) -> list[Cat]:
        """List all cats, newest first."""
        with store_errors("list_cats"):
            rows = await self.db.query("cats", "order=created_at.desc,id.desc")
        return [Cat.from_dict(r) for r in rows]

    async def update_salary(self, cat_id: int, salary: float) -> Cat:
        """Rewrite a cat's salary and return the updated record.

        Raises:
            AgencyError: INVALID_INPUT for a non-positive salary,
                NOT_FOUND if no such cat exists
        """
        _check_salary(salary)
        with store_errors("update_cat_salary"):
            rows = await self.db.update("cats", {"id": cat_id}, {"salary": salary})
        if not rows:
            raise AgencyError.not_found("cat")
        return Cat.from_dict(rows[0])

    async def delete(self, cat_id: int) -> None:
        """Delete a cat.

        Deletion is unconditional: a mission bound to the cat keeps existing
        and has its ``cat_id`` cleared by the store.

        Raises:
            AgencyError: NOT_FOUND if no such cat exists
        """
        with store_errors("delete_cat"):
            deleted = await self.db.delete("cats", {"id": cat_id})
        if not deleted:
            raise AgencyError.not_found("cat")
        logger.info("Deleted cat %s", cat_id)


# Global service instance
_cat_directory: CatDirectory | None = None


def get_cat_directory() -> CatDirectory:
    """Get the global cat directory instance."""
    global _cat_directory
    if _cat_directory is None:
        _cat_directory = CatDirectory()
    return _cat_directory
