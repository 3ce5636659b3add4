"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.exceptions import BadRequestException
from clinic_scheduler.core.redis_client import CacheManager, get_cache_manager
from clinic_scheduler.database import get_db
from clinic_scheduler.services.appointment_service import AppointmentService
from clinic_scheduler.services.queue_service import QueueService


async def get_tenant_id(
    x_tenant_id: Annotated[str, Header(description="Tenant the request is scoped to")],
) -> UUID:
    """
    Extract the tenant scope from the X-Tenant-ID header.

    Raises:
        BadRequestException: If the header is not a valid UUID
    """
    try:
        return UUID(x_tenant_id)
    except ValueError:
        raise BadRequestException("Invalid X-Tenant-ID header")


async def get_actor_id(
    x_user_id: Annotated[str | None, Header(description="Acting user, if known")] = None,
) -> UUID | None:
    """Extract the acting user from the optional X-User-ID header."""
    if x_user_id is None:
        return None
    try:
        return UUID(x_user_id)
    except ValueError:
        raise BadRequestException("Invalid X-User-ID header")


def get_cache() -> CacheManager | None:
    """Queue estimate cache, or None when caching is disabled."""
    return get_cache_manager()


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
TenantId = Annotated[UUID, Depends(get_tenant_id)]
ActorId = Annotated[UUID | None, Depends(get_actor_id)]
Cache = Annotated[CacheManager | None, Depends(get_cache)]


def get_appointment_service(db: DatabaseSession, cache: Cache) -> AppointmentService:
    return AppointmentService(db, cache)


def get_queue_service(db: DatabaseSession, cache: Cache) -> QueueService:
    return QueueService(db, cache)


AppointmentServiceDep = Annotated[AppointmentService, Depends(get_appointment_service)]
QueueServiceDep = Annotated[QueueService, Depends(get_queue_service)]
