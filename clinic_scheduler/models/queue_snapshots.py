"""Daily queue snapshot table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    Float,
    Integer,
    Table,
    Time,
    UniqueConstraint,
    Uuid,
)

from clinic_scheduler.core.timeutils import utcnow
from clinic_scheduler.models.appointments import metadata
from clinic_scheduler.models.types import UTCDateTime

# One row per (tenant, doctor, day); recomputation upserts in place
queue_snapshots = Table(
    "queue_snapshots",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=False),
    Column("doctor_id", Uuid, nullable=False),
    Column("snapshot_date", Date, nullable=False),
    # Rates in patients per hour
    Column("arrival_rate", Float, nullable=False),
    Column("service_rate", Float, nullable=False),
    Column("utilization", Float, nullable=False),
    Column("is_stable", Boolean, nullable=False),
    # M/M/1 outputs, only present for a stable queue
    Column("avg_wait_minutes", Float, nullable=True),
    Column("avg_wait_in_queue_minutes", Float, nullable=True),
    Column("avg_system_length", Float, nullable=True),
    Column("avg_queue_length", Float, nullable=True),
    Column("total_patients", Integer, nullable=False),
    Column("completed_appointments", Integer, nullable=False),
    Column("window_start", Time, nullable=False),
    Column("window_end", Time, nullable=False),
    Column("computed_at", UTCDateTime, nullable=False, default=utcnow),
    UniqueConstraint(
        "tenant_id", "doctor_id", "snapshot_date", name="uq_queue_snapshots_doctor_date"
    ),
    CheckConstraint("service_rate > 0", name="queue_snapshots_service_rate_check"),
    CheckConstraint("arrival_rate >= 0", name="queue_snapshots_arrival_rate_check"),
    CheckConstraint(
        "completed_appointments <= total_patients", name="queue_snapshots_completed_check"
    ),
)
