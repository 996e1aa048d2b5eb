"""Typed failures raised by the agency services.

Every failed precondition surfaces as an ``AgencyError`` carrying an
``ErrorKind`` plus a machine-readable ``reason`` code. Callers branch on
``kind`` (or ``reason``), never on the message text.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    INTERNAL = "internal"


# Failure reasons returned by the stored functions (see supabase/migrations).
REASON_KINDS: dict[str, ErrorKind] = {
    "cat_not_found": ErrorKind.NOT_FOUND,
    "mission_not_found": ErrorKind.NOT_FOUND,
    "target_not_found": ErrorKind.NOT_FOUND,
    "invalid_target_count": ErrorKind.INVALID_INPUT,
    "target_limit_reached": ErrorKind.CONFLICT,
    "cat_not_available": ErrorKind.CONFLICT,
    "mission_already_assigned": ErrorKind.CONFLICT,
    "mission_assigned": ErrorKind.CONFLICT,
    "mission_completed": ErrorKind.CONFLICT,
    "target_completed": ErrorKind.CONFLICT,
}

REASON_MESSAGES: dict[str, str] = {
    "cat_not_found": "cat not found",
    "mission_not_found": "mission not found",
    "target_not_found": "target not found",
    "invalid_target_count": "a mission must have between 1 and 3 targets",
    "target_limit_reached": "a mission cannot have more than 3 targets",
    "cat_not_available": "cat is not available for a mission",
    "mission_already_assigned": "mission is already assigned to a cat",
    "mission_assigned": "cannot delete a mission that is assigned to a cat",
    "mission_completed": "mission is already completed",
    "target_completed": "target is already completed",
}

INTERNAL_DETAIL = "internal error"


class AgencyError(Exception):
    """A failed agency operation."""

    def __init__(self, kind: ErrorKind, reason: str, message: str | None = None):
        self.kind = kind
        self.reason = reason
        self.message = message or REASON_MESSAGES.get(reason, reason)
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"AgencyError(kind={self.kind.value!r}, reason={self.reason!r})"

    @classmethod
    def from_reason(cls, reason: str | None, message: str | None = None) -> AgencyError:
        """Build an error from a stored-function failure reason."""
        if not reason:
            return cls(ErrorKind.INTERNAL, "unknown_failure", message or "operation failed")
        return cls(REASON_KINDS.get(reason, ErrorKind.INTERNAL), reason, message)

    @classmethod
    def from_result(cls, result: dict[str, Any]) -> AgencyError:
        return cls.from_reason(result.get("reason"), result.get("message"))

    @classmethod
    def not_found(cls, entity: str) -> AgencyError:
        return cls.from_reason(f"{entity}_not_found")

    @classmethod
    def invalid(cls, reason: str, message: str | None = None) -> AgencyError:
        return cls(ErrorKind.INVALID_INPUT, reason, message)

    @property
    def detail(self) -> str:
        """Message safe to hand to clients; INTERNAL failures stay generic."""
        if self.kind is ErrorKind.INTERNAL:
            return INTERNAL_DETAIL
        return self.message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "error": self.reason, "detail": self.detail}


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Re-raise store failures that are not business rules as INTERNAL.

    The original exception is chained, not logged; whoever handles the
    AgencyError logs it once.
    """
    try:
        yield
    except AgencyError:
        raise
    except Exception as exc:
        raise AgencyError(
            ErrorKind.INTERNAL, "store_error", f"{operation} failed: {exc}"
        ) from exc
