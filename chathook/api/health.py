"""
Health check endpoints for liveness and readiness probes.
"""
from fastapi import APIRouter, Response

from chathook.core.database import check_db_connection
from chathook.core.logging import get_logger
from chathook.schemas.message import HealthResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "/live",
    response_model=HealthResponse,
    summary="Liveness probe",
    description="Always returns 200 to indicate the service is alive."
)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness probe",
    description="Returns 200 if the message store is reachable."
)
async def readiness(response: Response) -> HealthResponse:
    """
    Readiness probe - checks if the service can handle traffic.

    Checks:
    - The message database is reachable and answers queries
    """
    checks = {}

    db_ok = check_db_connection()
    checks["database"] = "ok" if db_ok else "failed"

    if db_ok:
        return HealthResponse(status="ok", checks=checks)

    logger.warning("Readiness check failed: database not reachable")
    response.status_code = 503
    return HealthResponse(status="not ready", checks=checks)
