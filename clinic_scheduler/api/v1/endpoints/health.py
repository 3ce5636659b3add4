"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from clinic_scheduler.config import settings
from clinic_scheduler.core.redis_client import check_redis_connection
from clinic_scheduler.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Health of the service and its backing stores."""

    database: str
    cache: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check() -> DetailedHealthResponse:
    """
    Health including the record store and the estimate cache.

    The cache is optional: when it is down the service is degraded, not broken,
    because queue estimates are recomputed from the database.
    """
    db_healthy = await check_database_connection()

    if settings.cache_enabled:
        cache_state = "healthy" if await check_redis_connection() else "unhealthy"
    else:
        cache_state = "disabled"

    if not db_healthy:
        overall = "unhealthy"
    elif cache_state == "unhealthy":
        overall = "degraded"
    else:
        overall = "healthy"

    return DetailedHealthResponse(
        status=overall,
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        cache=cache_state,
    )
