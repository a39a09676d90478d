"""Health check endpoints for container orchestration."""

from typing import Any

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse

from regcomms.database import check_database_connection
from regcomms.services.scheduler import get_scheduler

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=None)
async def health_check() -> Response:
    """Health check with database and sweep scheduler status.

    Returns 503 when the database is unreachable, since escalation and
    deadline state live there.
    """
    db_connected = await check_database_connection()
    scheduler_running = get_scheduler() is not None

    if db_connected:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "status": "healthy",
                "database": "connected",
                "scheduler": "running" if scheduler_running else "stopped",
            },
        )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "degraded",
            "database": "disconnected",
            "scheduler": "running" if scheduler_running else "stopped",
        },
    )


@router.get("/health/live")
async def liveness_probe() -> dict[str, Any]:
    """Liveness probe; does not touch external dependencies."""
    return {"status": "alive"}


@router.get("/health/ready", response_model=None)
async def readiness_probe() -> Response:
    """Readiness probe; ready once the database answers."""
    if await check_database_connection():
        return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ready"})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready", "database": "disconnected"},
    )
