"""
Appointment service for booking and lifecycle logic.

Every write that can change which appointments are active on a doctor's day
(booking, reschedule, cancellation, no-show, soft delete) runs under the
booking lock for that day, re-reads the record store, and renumbers the day's
tokens before committing. Booking and reschedule also lock every earlier day
whose appointments can still run into the new interval. Any failure rolls
the whole unit back.
"""

from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import and_, insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.config import settings
from clinic_scheduler.core.exceptions import (
    ConflictException,
    InvalidStateException,
    InvalidTransitionException,
    InvariantViolationException,
    ValidationException,
)
from clinic_scheduler.core.locks import booking_lock
from clinic_scheduler.core.redis_client import CacheManager
from clinic_scheduler.core.timeutils import (
    at_clinic_time,
    clinic_date_of,
    format_clinic_time,
    to_utc,
    utcnow,
)
from clinic_scheduler.models.appointments import appointments
from clinic_scheduler.schemas.appointments import (
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    SlotResponse,
)
from clinic_scheduler.scheduling.overlap import (
    Interval,
    appointment_interval,
    find_conflicts,
)
from clinic_scheduler.scheduling.slots import enumerate_free_slots
from clinic_scheduler.scheduling.state_machine import (
    INACTIVE_STATUSES,
    RESCHEDULABLE_STATUSES,
    check_state_invariants,
    transition_values,
    validate_transition,
)
from clinic_scheduler.scheduling.tokens import (
    next_token,
    sequence_tokens,
    verify_token_sequence,
)
from clinic_scheduler.services.appointment_queries import (
    fetch_appointments_between,
    fetch_day_appointments,
    get_appointment_row,
)
from clinic_scheduler.services.queue_service import QueueService

logger = structlog.get_logger(__name__)


def lock_days(candidate: Interval) -> set[date]:
    """Clinic days whose appointments can overlap ``candidate``.

    An appointment lasts at most the maximum duration, so anything starting
    that long before the candidate may still reach into it, even across
    clinic midnight.
    """
    lookback = timedelta(minutes=settings.max_appointment_duration_minutes)
    first = clinic_date_of(candidate.start - lookback)
    last = clinic_date_of(candidate.end - timedelta(microseconds=1))
    return {first + timedelta(days=offset) for offset in range((last - first).days + 1)}


class AppointmentService:
    """Service for booking, rescheduling and transitioning appointments."""

    def __init__(
        self,
        db: AsyncSession,
        cache: CacheManager | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize service with database session, optional cache and clock."""
        self.db = db
        self.cache = cache
        self.clock = clock
        self.queue = QueueService(db, cache, clock)

    # ------------------------------------------------------------------
    # Conflict detection and token sequencing
    # ------------------------------------------------------------------

    async def find_conflicts(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        candidate: Interval,
        exclude_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        """
        Active appointments of a doctor overlapping ``candidate``.

        Only appointments starting within the longest allowed duration before
        the candidate can reach into it, which bounds the scan.
        """
        lookback = timedelta(minutes=settings.max_appointment_duration_minutes)
        nearby = await fetch_appointments_between(
            self.db,
            tenant_id,
            doctor_id,
            candidate.start - lookback,
            candidate.end,
            active_only=True,
        )
        return [dict(a) for a in find_conflicts(candidate, nearby, exclude_id=exclude_id)]

    async def count_conflicts(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        appointment_time: datetime,
        duration_minutes: int,
        exclude_id: UUID | None = None,
    ) -> int:
        """Number of active appointments overlapping the proposed interval."""
        start = to_utc(appointment_time)
        candidate = Interval(start, start + timedelta(minutes=duration_minutes))
        return len(await self.find_conflicts(doctor_id, tenant_id, candidate, exclude_id))

    async def _ensure_no_conflict(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        candidate: Interval,
        exclude_id: UUID | None = None,
    ) -> None:
        conflicts = await self.find_conflicts(doctor_id, tenant_id, candidate, exclude_id)
        if conflicts:
            conflicting_ids = [str(a["id"]) for a in conflicts]
            logger.info(
                "appointment_conflict",
                doctor_id=str(doctor_id),
                tenant_id=str(tenant_id),
                start=candidate.start.isoformat(),
                end=candidate.end.isoformat(),
                conflicting_ids=conflicting_ids,
            )
            raise ConflictException(
                "Doctor schedule conflict: overlapping appointment exists",
                conflicting_ids=conflicting_ids,
            )

    async def preview_token(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        appointment_time: datetime,
    ) -> int:
        """
        Token a booking at ``appointment_time`` would receive right now.

        Tokens follow appointment-time order, so the value is only a preview:
        a later booking for an earlier time shifts it.
        """
        start = to_utc(appointment_time)
        day_appointments = await fetch_day_appointments(
            self.db, tenant_id, doctor_id, clinic_date_of(start), active_only=True
        )
        return next_token(day_appointments, start)

    async def _resequence_tokens(self, tenant_id: UUID, doctor_id: UUID, day: date) -> dict[UUID, int]:
        """Renumber the day's active appointments 1..N by time. Caller holds the lock."""
        day_appointments = await fetch_day_appointments(
            self.db, tenant_id, doctor_id, day, active_only=True
        )
        tokens = sequence_tokens(day_appointments)
        verify_token_sequence(tokens.values())

        for appointment in day_appointments:
            token = tokens[appointment["id"]]
            if appointment["token_number"] != token:
                await self.db.execute(
                    update(appointments)
                    .where(appointments.c.id == appointment["id"])
                    .values(token_number=token)
                )
                logger.debug(
                    "token_assigned",
                    appointment_id=str(appointment["id"]),
                    previous=appointment["token_number"],
                    token_number=token,
                )

        return tokens

    async def _rollback(self, error: Exception, operation: str, **context: Any) -> None:
        await self.db.rollback()
        if isinstance(error, InvariantViolationException):
            logger.error(
                "invariant_violation",
                operation=operation,
                error=error.message,
                **{k: str(v) for k, v in context.items()},
            )

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    async def create_appointment(
        self,
        tenant_id: UUID,
        data: AppointmentCreate,
        created_by: UUID | None = None,
    ) -> AppointmentResponse:
        """
        Book a new appointment.

        Conflict check, token assignment and insert run as one unit under the
        doctor's booking lock for every clinic day the interval can collide with.

        Args:
            tenant_id: Tenant scope
            data: Booking request
            created_by: Acting user, if known

        Returns:
            Created appointment, status SCHEDULED, with its token

        Raises:
            ConflictException: If the interval overlaps an active appointment
        """
        start = to_utc(data.appointment_time)
        candidate = Interval(start, start + timedelta(minutes=data.duration_minutes))
        day = clinic_date_of(start)

        async with booking_lock(self.db, tenant_id, data.doctor_id, lock_days(candidate)):
            try:
                await self._ensure_no_conflict(data.doctor_id, tenant_id, candidate)

                day_appointments = await fetch_day_appointments(
                    self.db, tenant_id, data.doctor_id, day, active_only=True
                )
                token = next_token(day_appointments, start)
                now = self.clock()

                values = {
                    "id": uuid4(),
                    "tenant_id": tenant_id,
                    "doctor_id": data.doctor_id,
                    "patient_id": data.patient_id,
                    "appointment_time": start,
                    "duration_minutes": data.duration_minutes,
                    "token_number": token,
                    "status": AppointmentStatus.SCHEDULED.value,
                    "reason": data.reason,
                    "notes": data.notes,
                    "created_by": created_by,
                    "created_at": now,
                    "updated_at": now,
                }
                check_state_invariants(values)

                stmt = insert(appointments).values(**values).returning(appointments)
                result = await self.db.execute(stmt)
                row = dict(result.mappings().one())

                tokens = await self._resequence_tokens(tenant_id, data.doctor_id, day)
                if tokens.get(row["id"]) != token:
                    raise InvariantViolationException(
                        f"token {token} disagrees with time order ({tokens.get(row['id'])})"
                    )

                await self.db.commit()
            except Exception as e:
                await self._rollback(e, "create_appointment", doctor_id=data.doctor_id)
                raise

        self.queue.evict_queue_caches(tenant_id, data.doctor_id)
        logger.info(
            "appointment_created",
            appointment_id=str(row["id"]),
            doctor_id=str(data.doctor_id),
            tenant_id=str(tenant_id),
            token_number=token,
        )
        return AppointmentResponse.model_validate(row)

    async def get_appointment(self, appointment_id: UUID, tenant_id: UUID) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found in the tenant
        """
        row = await get_appointment_row(self.db, appointment_id, tenant_id)
        return AppointmentResponse.model_validate(row)

    async def list_doctor_appointments(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        day: date,
    ) -> list[AppointmentResponse]:
        """All live appointments of a doctor on a clinic day, by time."""
        rows = await fetch_day_appointments(self.db, tenant_id, doctor_id, day)
        return [AppointmentResponse.model_validate(row) for row in rows]

    async def update_appointment_time(
        self,
        appointment_id: UUID,
        tenant_id: UUID,
        data: AppointmentReschedule,
    ) -> AppointmentResponse:
        """
        Move an appointment to a new time and/or duration.

        The new interval is validated against every other active appointment
        (the appointment itself is excluded). Tokens are renumbered on both
        the old and the new day.

        Raises:
            NotFoundException: If appointment not found
            InvalidStateException: If the appointment has started or ended
            ConflictException: If the new interval overlaps another appointment
        """
        current = await get_appointment_row(self.db, appointment_id, tenant_id)
        doctor_id = current["doctor_id"]
        start = to_utc(data.appointment_time)
        duration = data.duration_minutes or current["duration_minutes"]
        candidate = Interval(start, start + timedelta(minutes=duration))
        days = {clinic_date_of(current["appointment_time"]), clinic_date_of(start)}

        async with booking_lock(self.db, tenant_id, doctor_id, days | lock_days(candidate)):
            try:
                current = await get_appointment_row(self.db, appointment_id, tenant_id)
                status = AppointmentStatus(current["status"])
                if status not in RESCHEDULABLE_STATUSES:
                    raise InvalidStateException(f"Cannot reschedule a {status.value} appointment")

                await self._ensure_no_conflict(
                    doctor_id, tenant_id, candidate, exclude_id=appointment_id
                )

                await self.db.execute(
                    update(appointments)
                    .where(appointments.c.id == appointment_id)
                    .values(
                        appointment_time=start,
                        duration_minutes=duration,
                        updated_at=self.clock(),
                    )
                )
                for day in sorted(days):
                    await self._resequence_tokens(tenant_id, doctor_id, day)

                row = await get_appointment_row(self.db, appointment_id, tenant_id)
                check_state_invariants(row)
                await self.db.commit()
            except Exception as e:
                await self._rollback(e, "update_appointment_time", appointment_id=appointment_id)
                raise

        self.queue.evict_queue_caches(tenant_id, doctor_id)
        logger.info(
            "appointment_rescheduled",
            appointment_id=str(appointment_id),
            appointment_time=start.isoformat(),
            duration_minutes=duration,
            token_number=row["token_number"],
        )
        return AppointmentResponse.model_validate(row)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def transition_appointment(
        self,
        appointment_id: UUID,
        tenant_id: UUID,
        target: AppointmentStatus,
        actor_id: UUID | None = None,
        reason: str | None = None,
    ) -> AppointmentResponse:
        """
        Apply a lifecycle transition.

        The status update is conditional on the status read under the lock,
        so a concurrent transition cannot be overwritten. Leaving the active
        set (cancel, no-show) renumbers the day's tokens.

        Raises:
            NotFoundException: If appointment not found or tombstoned
            InvalidTransitionException: If ``current -> target`` is not allowed
        """
        current = await get_appointment_row(self.db, appointment_id, tenant_id)
        doctor_id = current["doctor_id"]
        day = clinic_date_of(current["appointment_time"])

        async with booking_lock(self.db, tenant_id, doctor_id, [day]):
            try:
                current = await get_appointment_row(self.db, appointment_id, tenant_id)
                current_status = AppointmentStatus(current["status"])
                validate_transition(current_status, target)

                values = transition_values(target, self.clock(), actor_id, reason)
                check_state_invariants({**current, **values})

                stmt = (
                    update(appointments)
                    .where(
                        and_(
                            appointments.c.id == appointment_id,
                            appointments.c.status == current_status.value,
                            appointments.c.deleted_at.is_(None),
                        )
                    )
                    .values(**values)
                    .returning(appointments)
                )
                result = await self.db.execute(stmt)
                updated = result.mappings().first()
                if updated is None:
                    raise InvalidTransitionException(current_status.value, target.value)
                row = dict(updated)

                if target in INACTIVE_STATUSES:
                    await self._resequence_tokens(tenant_id, doctor_id, day)

                await self.db.commit()
            except InvalidTransitionException as e:
                await self.db.rollback()
                logger.info(
                    "invalid_transition",
                    appointment_id=str(appointment_id),
                    current=e.current,
                    target=e.target,
                )
                raise
            except Exception as e:
                await self._rollback(e, "transition_appointment", appointment_id=appointment_id)
                raise

        self.queue.evict_queue_caches(tenant_id, doctor_id)
        logger.info(
            "appointment_transitioned",
            appointment_id=str(appointment_id),
            from_status=current_status.value,
            to_status=target.value,
        )
        return AppointmentResponse.model_validate(row)

    async def confirm_appointment(self, appointment_id: UUID, tenant_id: UUID) -> AppointmentResponse:
        return await self.transition_appointment(
            appointment_id, tenant_id, AppointmentStatus.CONFIRMED
        )

    async def start_appointment(self, appointment_id: UUID, tenant_id: UUID) -> AppointmentResponse:
        return await self.transition_appointment(
            appointment_id, tenant_id, AppointmentStatus.IN_PROGRESS
        )

    async def complete_appointment(self, appointment_id: UUID, tenant_id: UUID) -> AppointmentResponse:
        return await self.transition_appointment(
            appointment_id, tenant_id, AppointmentStatus.COMPLETED
        )

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        tenant_id: UUID,
        cancelled_by: UUID | None,
        reason: str | None = None,
    ) -> AppointmentResponse:
        return await self.transition_appointment(
            appointment_id, tenant_id, AppointmentStatus.CANCELLED, cancelled_by, reason
        )

    async def mark_no_show(self, appointment_id: UUID, tenant_id: UUID) -> AppointmentResponse:
        return await self.transition_appointment(
            appointment_id, tenant_id, AppointmentStatus.NO_SHOW
        )

    async def soft_delete_appointment(self, appointment_id: UUID, tenant_id: UUID) -> None:
        """
        Tombstone an appointment.

        The record stays in the store but disappears from conflict, slot,
        token and queue computations.

        Raises:
            NotFoundException: If appointment not found or already deleted
        """
        current = await get_appointment_row(self.db, appointment_id, tenant_id)
        doctor_id = current["doctor_id"]
        day = clinic_date_of(current["appointment_time"])

        async with booking_lock(self.db, tenant_id, doctor_id, [day]):
            try:
                await get_appointment_row(self.db, appointment_id, tenant_id)
                now = self.clock()
                await self.db.execute(
                    update(appointments)
                    .where(appointments.c.id == appointment_id)
                    .values(deleted_at=now, updated_at=now)
                )
                await self._resequence_tokens(tenant_id, doctor_id, day)
                await self.db.commit()
            except Exception as e:
                await self._rollback(e, "soft_delete_appointment", appointment_id=appointment_id)
                raise

        self.queue.evict_queue_caches(tenant_id, doctor_id)
        logger.info("appointment_deleted", appointment_id=str(appointment_id))

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def list_available_slots(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        day: date,
        slot_duration_minutes: int | None = None,
    ) -> list[SlotResponse]:
        """
        Free slots in a doctor's working window on a clinic day.

        Read-only and lock-free: a returned slot can be taken by a concurrent
        booking, which is caught by the conflict check at booking time.

        Raises:
            ValidationException: If the slot duration is not positive
        """
        duration_minutes = (
            settings.default_slot_duration_minutes
            if slot_duration_minutes is None
            else slot_duration_minutes
        )
        if duration_minutes <= 0:
            raise ValidationException("Slot duration must be positive")

        work_start = at_clinic_time(day, settings.work_start)
        work_end = at_clinic_time(day, settings.work_end)

        busy = await fetch_day_appointments(self.db, tenant_id, doctor_id, day, active_only=True)
        now = self.clock()

        free = enumerate_free_slots(
            work_start,
            work_end,
            [appointment_interval(a) for a in busy],
            timedelta(minutes=duration_minutes),
            not_before=now if clinic_date_of(now) == day else None,
        )

        return [
            SlotResponse(
                slot_date=day,
                start_time=slot.start,
                end_time=slot.end,
                start_label=format_clinic_time(slot.start),
                end_label=format_clinic_time(slot.end),
                duration_minutes=duration_minutes,
            )
            for slot in free
        ]
