"""Health check endpoints for readiness and liveness checks."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from salesdesk.services.database import get_db_manager

router = APIRouter(prefix="/api/health", tags=["health"])


async def _database_status() -> str:
    db_manager = get_db_manager()
    if db_manager is None:
        return "not_initialized"
    return "healthy" if await db_manager.health_check() else "unhealthy"


@router.get(
    "/readiness",
    summary="Readiness check",
    description="Check if the service is ready to accept requests",
    status_code=status.HTTP_200_OK,
)
async def readiness() -> JSONResponse:
    """Readiness check endpoint.

    Returns 200 if the service is ready to handle requests,
    503 if the database is unavailable.

    Returns:
        JSONResponse with readiness status
    """
    checks = {"database": await _database_status()}

    if all(state == "healthy" for state in checks.values()):
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "checks": checks},
        )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready", "checks": checks},
    )


@router.get(
    "/liveness",
    summary="Liveness check",
    description="Check if the service is alive",
    status_code=status.HTTP_200_OK,
)
async def liveness() -> dict:
    """Liveness check endpoint.

    Returns:
        Simple status dict
    """
    return {"status": "alive"}


@router.get(
    "",
    summary="General health check",
    description="Health check with per-dependency status",
    status_code=status.HTTP_200_OK,
)
async def health() -> dict:
    """Health check with database connectivity details.

    Returns:
        Detailed health status dict
    """
    db_manager = get_db_manager()
    checks = {
        "database": {
            "status": await _database_status(),
            "type": db_manager.async_url.split(":")[0] if db_manager else "unknown",
        }
    }

    all_healthy = all(check["status"] == "healthy" for check in checks.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "version": "0.1.0",
        "service": "salesdesk",
        "checks": checks,
    }
