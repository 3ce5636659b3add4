"""
Queue management service - M/M/1 queueing estimates per doctor.

Caching strategy (all keys per tenant and doctor, dropped on any status change):
- Queue status: 30 seconds (highly volatile)
- Wait time / queue position: per appointment, seconds
- Arrival rate: 5 minutes
- Service rate: 1 hour
- Stored snapshots: hours
"""

from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.config import settings
from clinic_scheduler.core.exceptions import (
    InvariantViolationException,
    NotFoundException,
)
from clinic_scheduler.core.redis_client import CacheManager
from clinic_scheduler.core.timeutils import (
    clinic_date_of,
    clinic_day_bounds,
    utcnow,
)
from clinic_scheduler.models.queue_snapshots import queue_snapshots
from clinic_scheduler.schemas.appointments import AppointmentStatus
from clinic_scheduler.schemas.queue import (
    EstimateConfidence,
    QueuePosition,
    QueueSnapshotResponse,
    QueueStatus,
    WaitTimeEstimate,
)
from clinic_scheduler.scheduling import queueing
from clinic_scheduler.scheduling.overlap import is_active
from clinic_scheduler.scheduling.state_machine import WAITING_STATUSES
from clinic_scheduler.services.appointment_queries import (
    count_completed_between,
    fetch_day_appointments,
    get_appointment_row,
)

logger = structlog.get_logger(__name__)

# ρ must equal λ/μ within this tolerance
UTILIZATION_TOLERANCE = 1e-4


class QueueService:
    """Service for queue position, wait-time and capacity estimates."""

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

    # ------------------------------------------------------------------
    # Cache keys
    # ------------------------------------------------------------------

    @staticmethod
    def _doctor_prefix(tenant_id: UUID, doctor_id: UUID) -> str:
        return f"queue:{tenant_id}:{doctor_id}"

    @classmethod
    def _status_key(cls, tenant_id: UUID, doctor_id: UUID) -> str:
        return f"{cls._doctor_prefix(tenant_id, doctor_id)}:status"

    @classmethod
    def _service_rate_key(cls, tenant_id: UUID, doctor_id: UUID, as_of: date) -> str:
        return f"{cls._doctor_prefix(tenant_id, doctor_id)}:service_rate:{as_of}"

    @classmethod
    def _arrival_rate_key(cls, tenant_id: UUID, doctor_id: UUID, day: date) -> str:
        return f"{cls._doctor_prefix(tenant_id, doctor_id)}:arrival_rate:{day}"

    @classmethod
    def _position_key(
        cls, tenant_id: UUID, doctor_id: UUID, day: date, appointment_id: UUID
    ) -> str:
        return f"{cls._doctor_prefix(tenant_id, doctor_id)}:position:{day}:{appointment_id}"

    @classmethod
    def _wait_key(cls, tenant_id: UUID, doctor_id: UUID, appointment_id: UUID) -> str:
        return f"{cls._doctor_prefix(tenant_id, doctor_id)}:wait:{appointment_id}"

    @staticmethod
    def _snapshot_key(tenant_id: UUID, doctor_id: UUID, day: date) -> str:
        return f"queue_snapshot:{tenant_id}:{doctor_id}:{day}"

    def evict_queue_caches(self, tenant_id: UUID, doctor_id: UUID) -> int:
        """Drop every live estimate for a doctor. Called after any schedule change."""
        if not self.cache:
            return 0
        deleted = self.cache.delete_pattern(f"{self._doctor_prefix(tenant_id, doctor_id)}:*")
        logger.debug(
            "queue_caches_invalidated",
            tenant_id=str(tenant_id),
            doctor_id=str(doctor_id),
            keys=deleted,
        )
        return deleted

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------

    def _today(self) -> date:
        return clinic_date_of(self.clock())

    async def calculate_service_rate(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        as_of: date | None = None,
        use_cache: bool = True,
    ) -> float:
        """
        Service rate μ (patients per hour) for a doctor.

        Formula: μ = completed / (working_hours_per_day * lookback_days), over
        the lookback window ending with ``as_of`` (default today), floored at
        the configured minimum rate.

        Args:
            doctor_id: Doctor ID
            tenant_id: Tenant ID
            as_of: Last clinic day of the lookback window
            use_cache: Read and populate the rate cache

        Returns:
            Service rate in patients per hour
        """
        as_of = as_of or self._today()
        cache_key = self._service_rate_key(tenant_id, doctor_id, as_of)

        if use_cache and self.cache:
            cached = self.cache.get_json(cache_key)
            if cached is not None:
                return float(cached)

        # The lookback covers whole clinic days, as_of included
        first_day = as_of - timedelta(days=settings.service_rate_lookback_days - 1)
        window_start, _ = clinic_day_bounds(first_day)
        _, window_end = clinic_day_bounds(as_of)
        completed = await count_completed_between(
            self.db, tenant_id, doctor_id, window_start, window_end
        )

        rate = queueing.service_rate(
            completed,
            settings.working_hours_per_day,
            settings.service_rate_lookback_days,
            settings.min_service_rate,
        )
        logger.debug(
            "service_rate_calculated",
            doctor_id=str(doctor_id),
            as_of=str(as_of),
            completed=completed,
            service_rate=rate,
        )

        if use_cache and self.cache:
            self.cache.set_json(cache_key, rate, ttl=settings.service_rate_cache_ttl)

        return rate

    async def calculate_arrival_rate(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        day: date,
        use_cache: bool = True,
    ) -> float:
        """
        Arrival rate λ (patients per hour) for a doctor on a clinic day.

        Formula: λ = active appointments that day / clinic hours per day.
        """
        cache_key = self._arrival_rate_key(tenant_id, doctor_id, day)

        if use_cache and self.cache:
            cached = self.cache.get_json(cache_key)
            if cached is not None:
                return float(cached)

        active = await fetch_day_appointments(self.db, tenant_id, doctor_id, day, active_only=True)
        rate = queueing.arrival_rate(len(active), settings.clinic_hours_per_day)
        logger.debug(
            "arrival_rate_calculated",
            doctor_id=str(doctor_id),
            day=str(day),
            appointments=len(active),
            arrival_rate=rate,
        )

        if use_cache and self.cache:
            self.cache.set_json(cache_key, rate, ttl=settings.arrival_rate_cache_ttl)

        return rate

    async def compute_metrics(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        day: date,
        as_of: date | None = None,
        use_cache: bool = True,
    ) -> queueing.QueueMetrics:
        """M/M/1 metrics for a doctor's day."""
        arrival = await self.calculate_arrival_rate(doctor_id, tenant_id, day, use_cache=use_cache)
        service = await self.calculate_service_rate(
            doctor_id, tenant_id, as_of=as_of, use_cache=use_cache
        )
        metrics = queueing.mm1_metrics(arrival, service)

        if not metrics.stable:
            logger.warning(
                "queue_unstable",
                doctor_id=str(doctor_id),
                day=str(day),
                utilization=metrics.utilization,
            )

        return metrics

    # ------------------------------------------------------------------
    # Live queue
    # ------------------------------------------------------------------

    async def get_queue_position(
        self,
        appointment_id: UUID,
        tenant_id: UUID,
        doctor_id: UUID | None = None,
        day: date | None = None,
    ) -> QueuePosition:
        """
        Position of an appointment in its doctor's day.

        Position counts active appointments with an earlier time, plus one.

        Args:
            appointment_id: Appointment ID
            tenant_id: Tenant ID
            doctor_id: Doctor the appointment must belong to (default: its own)
            day: Clinic day to rank within (default: the appointment's day)

        Raises:
            NotFoundException: If the appointment does not exist for that doctor
        """
        appointment = await get_appointment_row(self.db, appointment_id, tenant_id)

        if doctor_id is not None and appointment["doctor_id"] != doctor_id:
            raise NotFoundException(f"Appointment not found for doctor: {appointment_id}")

        doctor_id = appointment["doctor_id"]
        day = day or clinic_date_of(appointment["appointment_time"])
        cache_key = self._position_key(tenant_id, doctor_id, day, appointment_id)

        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return QueuePosition.model_validate(cached)

        active = await fetch_day_appointments(self.db, tenant_id, doctor_id, day, active_only=True)
        ahead = sum(1 for a in active if a["appointment_time"] < appointment["appointment_time"])

        position = QueuePosition(
            appointment_id=appointment_id,
            position=ahead + 1,
            queue_length=len(active),
            ahead_count=ahead,
        )

        if self.cache:
            self.cache.set_json(
                cache_key,
                position.model_dump(mode="json"),
                ttl=settings.queue_position_cache_ttl,
            )

        return position

    def _fallback_estimate(
        self,
        appointment_id: UUID,
        metrics: queueing.QueueMetrics | None,
    ) -> WaitTimeEstimate:
        return WaitTimeEstimate(
            appointment_id=appointment_id,
            estimated_wait_minutes=settings.unstable_wait_fallback_minutes,
            stable=False,
            confidence=EstimateConfidence.LOW,
            arrival_rate=metrics.arrival_rate if metrics else None,
            service_rate=metrics.service_rate if metrics else None,
            utilization=metrics.utilization if metrics else None,
        )

    async def estimate_wait_time(self, appointment_id: UUID, tenant_id: UUID) -> WaitTimeEstimate:
        """
        Estimate the wait for an appointment.

        The base wait is the M/M/1 time in system W = 1/(μ - λ). A separate
        position heuristic then scales it by max(1, position // divisor).
        An unstable queue (ρ >= 1) returns a fixed low-confidence fallback
        instead; wait display is advisory, so estimation never fails the request.

        Raises:
            NotFoundException: If the appointment does not exist
        """
        appointment = await get_appointment_row(self.db, appointment_id, tenant_id)
        doctor_id = appointment["doctor_id"]
        cache_key = self._wait_key(tenant_id, doctor_id, appointment_id)

        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return WaitTimeEstimate.model_validate(cached)

        day = clinic_date_of(appointment["appointment_time"])

        try:
            metrics = await self.compute_metrics(doctor_id, tenant_id, day)
        except (ArithmeticError, ValueError) as e:
            logger.warning(
                "wait_time_fallback",
                appointment_id=str(appointment_id),
                error=str(e),
            )
            return self._fallback_estimate(appointment_id, None)

        if not metrics.stable or metrics.wait_in_system_minutes is None:
            estimate = self._fallback_estimate(appointment_id, metrics)
        else:
            base_minutes = round(metrics.wait_in_system_minutes)
            position = await self.get_queue_position(appointment_id, tenant_id, doctor_id, day)
            multiplier = queueing.position_multiplier(
                position.position, settings.queue_position_scale_divisor
            )
            estimate = WaitTimeEstimate(
                appointment_id=appointment_id,
                estimated_wait_minutes=base_minutes * multiplier,
                base_wait_minutes=base_minutes,
                position_multiplier=multiplier,
                stable=True,
                confidence=EstimateConfidence.MEDIUM,
                arrival_rate=metrics.arrival_rate,
                service_rate=metrics.service_rate,
                utilization=metrics.utilization,
            )

        if self.cache:
            self.cache.set_json(
                cache_key,
                estimate.model_dump(mode="json"),
                ttl=settings.wait_time_cache_ttl,
            )

        return estimate

    async def get_queue_status(self, doctor_id: UUID, tenant_id: UUID) -> QueueStatus:
        """
        Current queue state for a doctor's display board.

        The current token is the appointment in progress; the next token is
        the earliest appointment still waiting.
        """
        cache_key = self._status_key(tenant_id, doctor_id)

        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return QueueStatus.model_validate(cached)

        now = self.clock()
        today = clinic_date_of(now)
        day_appointments = await fetch_day_appointments(self.db, tenant_id, doctor_id, today)

        in_progress = next(
            (
                a
                for a in day_appointments
                if a["status"] == AppointmentStatus.IN_PROGRESS.value
            ),
            None,
        )
        waiting = [
            a for a in day_appointments if AppointmentStatus(a["status"]) in WAITING_STATUSES
        ]
        next_up = min(waiting, key=lambda a: a["appointment_time"]) if waiting else None

        metrics = await self.compute_metrics(doctor_id, tenant_id, today)
        if metrics.stable and metrics.wait_in_system_minutes is not None:
            avg_wait = round(metrics.wait_in_system_minutes)
        else:
            avg_wait = settings.unstable_wait_fallback_minutes

        status = QueueStatus(
            doctor_id=doctor_id,
            current_token=in_progress["token_number"] if in_progress else None,
            next_token=next_up["token_number"] if next_up else None,
            patients_waiting=len(waiting),
            avg_wait_minutes=avg_wait,
            utilization=metrics.utilization,
            stable=metrics.stable,
            timestamp=now,
        )

        if self.cache:
            self.cache.set_json(
                cache_key,
                status.model_dump(mode="json"),
                ttl=settings.queue_status_cache_ttl,
            )

        return status

    # ------------------------------------------------------------------
    # Daily snapshots
    # ------------------------------------------------------------------

    @staticmethod
    def _check_snapshot_invariants(values: dict[str, Any]) -> None:
        arrival = values["arrival_rate"]
        service = values["service_rate"]
        utilization = values["utilization"]

        if service <= 0:
            raise InvariantViolationException(f"service rate must be positive, got {service}")
        if arrival < 0:
            raise InvariantViolationException(f"arrival rate cannot be negative, got {arrival}")
        if abs(utilization - arrival / service) > UTILIZATION_TOLERANCE:
            raise InvariantViolationException(
                f"utilization {utilization} does not equal λ/μ {arrival / service}"
            )
        if values["completed_appointments"] > values["total_patients"]:
            raise InvariantViolationException(
                "completed appointments exceed total patients "
                f"({values['completed_appointments']} > {values['total_patients']})"
            )
        if values["window_start"] > values["window_end"]:
            raise InvariantViolationException("snapshot window starts after it ends")

        formula_fields = (
            "avg_wait_minutes",
            "avg_wait_in_queue_minutes",
            "avg_system_length",
            "avg_queue_length",
        )
        present = [values[field] is not None for field in formula_fields]
        if values["is_stable"] != all(present) or any(present) != all(present):
            raise InvariantViolationException("M/M/1 outputs must be present iff queue is stable")

    async def _upsert_snapshot(self, values: dict[str, Any]) -> dict[str, Any]:
        """
        Insert or replace the row keyed by (tenant, doctor, date).

        A stored row whose metrics already match is returned untouched, so
        ``computed_at`` marks the last time the numbers changed.
        """
        key_columns = ["tenant_id", "doctor_id", "snapshot_date"]
        key_filter = and_(*(queue_snapshots.c[column] == values[column] for column in key_columns))
        existing = (
            await self.db.execute(select(queue_snapshots).where(key_filter))
        ).mappings().first()
        if existing and all(
            existing[column] == value for column, value in values.items() if column != "computed_at"
        ):
            return dict(existing)

        dialect = self.db.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            insert_fn = postgresql_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert_fn(queue_snapshots).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=key_columns,
                set_={
                    column: stmt.excluded[column]
                    for column in values
                    if column not in key_columns
                },
            ).returning(queue_snapshots)
            result = await self.db.execute(stmt)
            return dict(result.mappings().one())

        # Dialects without ON CONFLICT: update first, insert when nothing matched
        result = await self.db.execute(
            update(queue_snapshots).where(key_filter).values(**values)
        )
        if result.rowcount == 0:
            await self.db.execute(queue_snapshots.insert().values(**values))
        row = (await self.db.execute(select(queue_snapshots).where(key_filter))).mappings().one()
        return dict(row)

    async def compute_daily_snapshot(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        day: date,
    ) -> QueueSnapshotResponse:
        """
        Compute and store the queue metrics for a doctor's day.

        Idempotent: rates are read straight from the record store (never the
        cache) and the service-rate window ends on ``day``, so recomputing a
        past day with unchanged data writes the same values to the same row.

        Raises:
            InvariantViolationException: If the computed metrics are inconsistent;
                nothing is written
        """
        metrics = await self.compute_metrics(
            doctor_id, tenant_id, day, as_of=day, use_cache=False
        )
        day_appointments = await fetch_day_appointments(self.db, tenant_id, doctor_id, day)
        active = [a for a in day_appointments if is_active(a)]
        completed = [a for a in active if a["status"] == AppointmentStatus.COMPLETED.value]

        values: dict[str, Any] = {
            "tenant_id": tenant_id,
            "doctor_id": doctor_id,
            "snapshot_date": day,
            "arrival_rate": metrics.arrival_rate,
            "service_rate": metrics.service_rate,
            "utilization": metrics.utilization,
            "is_stable": metrics.stable,
            "avg_wait_minutes": metrics.wait_in_system_minutes,
            "avg_wait_in_queue_minutes": metrics.wait_in_queue_minutes,
            "avg_system_length": metrics.number_in_system,
            "avg_queue_length": metrics.number_in_queue,
            "total_patients": len(active),
            "completed_appointments": len(completed),
            "window_start": settings.snapshot_window_start,
            "window_end": settings.snapshot_window_end,
            "computed_at": self.clock(),
        }

        try:
            self._check_snapshot_invariants(values)
            row = await self._upsert_snapshot(values)
            await self.db.commit()
        except InvariantViolationException as e:
            await self.db.rollback()
            logger.error(
                "invariant_violation",
                operation="compute_daily_snapshot",
                doctor_id=str(doctor_id),
                day=str(day),
                error=e.message,
            )
            raise
        except Exception:
            await self.db.rollback()
            raise

        if self.cache:
            self.cache.delete(self._snapshot_key(tenant_id, doctor_id, day))

        logger.info(
            "queue_snapshot_saved",
            doctor_id=str(doctor_id),
            tenant_id=str(tenant_id),
            day=str(day),
            utilization=metrics.utilization,
            stable=metrics.stable,
            avg_wait_minutes=metrics.wait_in_system_minutes,
        )
        return QueueSnapshotResponse.model_validate(row)

    async def get_snapshot(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        day: date,
    ) -> QueueSnapshotResponse:
        """
        Stored snapshot for a doctor's day.

        Raises:
            NotFoundException: If no snapshot has been computed for that day
        """
        cache_key = self._snapshot_key(tenant_id, doctor_id, day)
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return QueueSnapshotResponse.model_validate(cached)

        stmt = select(queue_snapshots).where(
            and_(
                queue_snapshots.c.tenant_id == tenant_id,
                queue_snapshots.c.doctor_id == doctor_id,
                queue_snapshots.c.snapshot_date == day,
            )
        )
        row = (await self.db.execute(stmt)).mappings().first()
        if not row:
            raise NotFoundException(f"No queue snapshot for {day}")

        snapshot = QueueSnapshotResponse.model_validate(dict(row))
        if self.cache:
            self.cache.set_json(
                cache_key,
                snapshot.model_dump(mode="json"),
                ttl=settings.snapshot_cache_ttl,
            )
        return snapshot

    async def list_snapshots(
        self,
        doctor_id: UUID,
        tenant_id: UUID,
        from_date: date,
        to_date: date,
        min_utilization: float | None = None,
        unstable_only: bool = False,
    ) -> list[QueueSnapshotResponse]:
        """Stored snapshots for a doctor in ``[from_date, to_date]``, oldest first."""
        conditions = [
            queue_snapshots.c.tenant_id == tenant_id,
            queue_snapshots.c.doctor_id == doctor_id,
            queue_snapshots.c.snapshot_date >= from_date,
            queue_snapshots.c.snapshot_date <= to_date,
        ]
        if min_utilization is not None:
            conditions.append(queue_snapshots.c.utilization > min_utilization)
        if unstable_only:
            conditions.append(queue_snapshots.c.is_stable.is_(False))

        stmt = select(queue_snapshots).where(and_(*conditions)).order_by(
            queue_snapshots.c.snapshot_date
        )
        result = await self.db.execute(stmt)
        return [QueueSnapshotResponse.model_validate(dict(row)) for row in result.mappings().all()]
