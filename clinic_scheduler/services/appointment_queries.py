"""Read helpers over the appointment record store."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.exceptions import NotFoundException
from clinic_scheduler.core.timeutils import clinic_day_bounds
from clinic_scheduler.models.appointments import appointments
from clinic_scheduler.schemas.appointments import AppointmentStatus
from clinic_scheduler.scheduling.state_machine import INACTIVE_STATUSES

INACTIVE_VALUES = [status.value for status in INACTIVE_STATUSES]


async def get_appointment_row(
    db: AsyncSession,
    appointment_id: UUID,
    tenant_id: UUID,
) -> dict[str, Any]:
    """
    Fetch a live appointment within a tenant.

    Raises:
        NotFoundException: If missing, tombstoned or owned by another tenant
    """
    stmt = select(appointments).where(
        and_(
            appointments.c.id == appointment_id,
            appointments.c.tenant_id == tenant_id,
            appointments.c.deleted_at.is_(None),
        )
    )
    result = await db.execute(stmt)
    row = result.mappings().first()

    if not row:
        raise NotFoundException(f"Appointment not found: {appointment_id}")

    return dict(row)


async def fetch_appointments_between(
    db: AsyncSession,
    tenant_id: UUID,
    doctor_id: UUID,
    start: datetime,
    end: datetime,
    active_only: bool = False,
) -> list[dict[str, Any]]:
    """Live appointments of a doctor whose start lies in ``[start, end)``, by time."""
    conditions = [
        appointments.c.tenant_id == tenant_id,
        appointments.c.doctor_id == doctor_id,
        appointments.c.appointment_time >= start,
        appointments.c.appointment_time < end,
        appointments.c.deleted_at.is_(None),
    ]
    if active_only:
        conditions.append(appointments.c.status.not_in(INACTIVE_VALUES))

    stmt = select(appointments).where(and_(*conditions)).order_by(appointments.c.appointment_time)
    result = await db.execute(stmt)
    return [dict(row) for row in result.mappings().all()]


async def fetch_day_appointments(
    db: AsyncSession,
    tenant_id: UUID,
    doctor_id: UUID,
    day: date,
    active_only: bool = False,
) -> list[dict[str, Any]]:
    """Live appointments of a doctor starting on a clinic day, by time."""
    day_start, day_end = clinic_day_bounds(day)
    return await fetch_appointments_between(
        db, tenant_id, doctor_id, day_start, day_end, active_only=active_only
    )


async def count_completed_between(
    db: AsyncSession,
    tenant_id: UUID,
    doctor_id: UUID,
    start: datetime,
    end: datetime,
) -> int:
    """Appointments of a doctor completed inside ``[start, end)``."""
    stmt = (
        select(func.count())
        .select_from(appointments)
        .where(
            and_(
                appointments.c.tenant_id == tenant_id,
                appointments.c.doctor_id == doctor_id,
                appointments.c.status == AppointmentStatus.COMPLETED.value,
                appointments.c.completed_at >= start,
                appointments.c.completed_at < end,
                appointments.c.deleted_at.is_(None),
            )
        )
    )
    result = await db.execute(stmt)
    return result.scalar() or 0
