"""Spy Cat Agency HTTP API.

Thin FastAPI layer over the cat directory and the assignment/completion
coordinators. Handlers parse requests into service calls; ``AgencyError``
kinds map to HTTP status codes in one exception handler.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import get_config
from .errors import AgencyError, ErrorKind
from .missions import NewTarget

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}

# =============================================================================
# Pydantic request models
# =============================================================================


class CreateCatRequest(BaseModel):
    name: str = Field(min_length=1)
    years_of_experience: int = Field(ge=0)
    breed: str = Field(min_length=1)
    salary: float = Field(gt=0)


class UpdateSalaryRequest(BaseModel):
    salary: float = Field(gt=0)


class TargetRequest(BaseModel):
    name: str = Field(min_length=1)
    country: str = Field(min_length=1)
    notes: str = ""


class CreateMissionRequest(BaseModel):
    cat_id: int | None = None
    targets: list[TargetRequest] = Field(min_length=1, max_length=3)


class AssignCatRequest(BaseModel):
    cat_id: int


class CompleteMissionRequest(BaseModel):
    completed: bool = True


class UpdateNotesRequest(BaseModel):
    notes: str


def _new_target(request: TargetRequest) -> NewTarget:
    return NewTarget(name=request.name, country=request.country, notes=request.notes)


# =============================================================================
# Application factory
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Starting Spy Cat Agency API (backend=%s)", get_config().database.backend)
    yield
    from .breeds import get_breed_validator
    from .db import close_db

    await get_breed_validator().close()
    await close_db()
    logger.info("Spy Cat Agency API stopped")


def create_app() -> FastAPI:
    """Create the Spy Cat Agency HTTP API application."""

    app = FastAPI(
        title="Spy Cat Agency API",
        description="Cats, missions and targets with consistent assignment and completion",
        version=API_VERSION,
        lifespan=lifespan,
    )

    @app.exception_handler(AgencyError)
    async def agency_error_handler(request: Request, exc: AgencyError) -> JSONResponse:
        status = STATUS_BY_KIND.get(exc.kind, 500)
        if status >= 500:
            # Full text and chained cause go to the log only.
            logger.error(
                "%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc
            )
        return JSONResponse(
            status_code=status,
            content={"error": exc.reason, "detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_input", "detail": jsonable_encoder(exc.errors())},
        )

    # --------------------------------------------------------------------- #
    # CATS
    # --------------------------------------------------------------------- #

    @app.post("/api/v1/cats", status_code=201)
    async def create_cat(request: CreateCatRequest) -> dict[str, Any]:
        """Register a cat. The breed is checked against TheCatAPI."""
        from .cats import get_cat_directory

        cat = await get_cat_directory().create(
            name=request.name,
            years_of_experience=request.years_of_experience,
            breed=request.breed,
            salary=request.salary,
        )
        return cat.to_dict()

    @app.get("/api/v1/cats")
    async def list_cats() -> list[dict[str, Any]]:
        from .cats import get_cat_directory

        return [cat.to_dict() for cat in await get_cat_directory().list_cats()]

    @app.get("/api/v1/cats/{cat_id}")
    async def get_cat(cat_id: int) -> dict[str, Any]:
        from .cats import get_cat_directory

        cat = await get_cat_directory().get(cat_id)
        return cat.to_dict()

    @app.patch("/api/v1/cats/{cat_id}/salary")
    async def update_cat_salary(cat_id: int, request: UpdateSalaryRequest) -> dict[str, Any]:
        from .cats import get_cat_directory

        cat = await get_cat_directory().update_salary(cat_id, request.salary)
        return cat.to_dict()

    @app.delete("/api/v1/cats/{cat_id}", status_code=204)
    async def delete_cat(cat_id: int) -> Response:
        from .cats import get_cat_directory

        await get_cat_directory().delete(cat_id)
        return Response(status_code=204)

    # --------------------------------------------------------------------- #
    # MISSIONS
    # --------------------------------------------------------------------- #

    @app.post("/api/v1/missions", status_code=201)
    async def create_mission(request: CreateMissionRequest) -> dict[str, Any]:
        """Create a mission with its targets, optionally binding a cat."""
        from .assignment import get_assignment_coordinator

        mission = await get_assignment_coordinator().create_mission(
            [_new_target(t) for t in request.targets],
            cat_id=request.cat_id,
        )
        return mission.to_dict()

    @app.get("/api/v1/missions")
    async def list_missions() -> list[dict[str, Any]]:
        from .missions import get_mission_store

        return [m.to_dict() for m in await get_mission_store().list_missions()]

    @app.get("/api/v1/missions/{mission_id}")
    async def get_mission(mission_id: int) -> dict[str, Any]:
        from .missions import get_mission_store

        mission = await get_mission_store().get(mission_id)
        return mission.to_dict()

    @app.delete("/api/v1/missions/{mission_id}", status_code=204)
    async def delete_mission(mission_id: int) -> Response:
        """Delete a mission. Rejected with 409 while a cat is assigned."""
        from .assignment import get_assignment_coordinator

        await get_assignment_coordinator().delete_mission(mission_id)
        return Response(status_code=204)

    @app.patch("/api/v1/missions/{mission_id}/assign-cat")
    async def assign_cat(mission_id: int, request: AssignCatRequest) -> dict[str, Any]:
        from .assignment import get_assignment_coordinator

        mission = await get_assignment_coordinator().assign_cat(mission_id, request.cat_id)
        return mission.to_dict()

    @app.patch("/api/v1/missions/{mission_id}/complete")
    async def complete_mission(
        mission_id: int, request: CompleteMissionRequest
    ) -> dict[str, Any]:
        from .completion import get_completion_coordinator

        mission = await get_completion_coordinator().complete_mission(
            mission_id, completed=request.completed
        )
        return mission.to_dict()

    @app.post("/api/v1/missions/{mission_id}/targets", status_code=201)
    async def add_target(mission_id: int, request: TargetRequest) -> dict[str, Any]:
        from .completion import get_completion_coordinator

        target = await get_completion_coordinator().add_target(
            mission_id, _new_target(request)
        )
        return target.to_dict()

    # --------------------------------------------------------------------- #
    # TARGETS
    # --------------------------------------------------------------------- #

    @app.patch("/api/v1/targets/{target_id}/notes")
    async def update_target_notes(
        target_id: int, request: UpdateNotesRequest
    ) -> dict[str, Any]:
        from .completion import get_completion_coordinator

        target = await get_completion_coordinator().update_target_notes(
            target_id, request.notes
        )
        return target.to_dict()

    @app.patch("/api/v1/targets/{target_id}/complete")
    async def complete_target(target_id: int) -> dict[str, Any]:
        """Complete a target; the mission completes when its last target does."""
        from .completion import get_completion_coordinator

        completion = await get_completion_coordinator().complete_target(target_id)
        return completion.to_dict()

    @app.delete("/api/v1/targets/{target_id}", status_code=204)
    async def delete_target(target_id: int) -> Response:
        from .completion import get_completion_coordinator

        await get_completion_coordinator().delete_target(target_id)
        return Response(status_code=204)

    # --------------------------------------------------------------------- #
    # HEALTH
    # --------------------------------------------------------------------- #

    @app.get("/health")
    async def health() -> Any:
        """Health check endpoint with database connectivity check."""
        from .db import get_db

        try:
            await asyncio.wait_for(get_db().query("cats", "limit=1", select="id"), timeout=2.0)
        except Exception:
            logger.warning("Health check could not reach the database", exc_info=True)
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "db": "unreachable", "version": API_VERSION},
            )
        return {"status": "ok", "db": "connected", "version": API_VERSION}

    return app


# =============================================================================
# MAIN
# =============================================================================


def main() -> None:
    """Entry point for the HTTP API server."""
    import uvicorn

    config = get_config()
    host = config.api.host
    port = config.api.port

    # Allow CLI overrides
    for arg in sys.argv[1:]:
        if arg.startswith("--host="):
            host = arg.split("=", 1)[1]
        elif arg.startswith("--port="):
            port = int(arg.split("=", 1)[1])

    logging.basicConfig(
        level=config.api.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn.run(
        "spycats.api:create_app",
        factory=True,
        host=host,
        port=port,
        workers=config.api.workers,
        access_log=config.api.access_log,
        log_level=config.api.log_level.lower(),
    )


if __name__ == "__main__":
    main()
