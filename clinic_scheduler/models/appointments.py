"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    Uuid,
)

from clinic_scheduler.core.timeutils import utcnow
from clinic_scheduler.models.types import UTCDateTime

# Metadata for all tables
metadata = MetaData()

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Scoping (tenant, doctor and patient are owned by other services)
    Column("tenant_id", Uuid, nullable=False),
    Column("doctor_id", Uuid, nullable=False),
    Column("patient_id", Uuid, nullable=False),
    # Slot
    Column("appointment_time", UTCDateTime, nullable=False),
    Column("duration_minutes", Integer, nullable=False, default=30),
    # Sequential per doctor per clinic day, renumbered on schedule changes
    Column("token_number", Integer, nullable=True),
    # Status management
    Column("status", Text, nullable=False, default="scheduled"),
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    # State machine tracking
    Column("confirmed_at", UTCDateTime, nullable=True),
    Column("started_at", UTCDateTime, nullable=True),
    Column("completed_at", UTCDateTime, nullable=True),
    Column("cancelled_at", UTCDateTime, nullable=True),
    Column("cancelled_by", Uuid, nullable=True),
    Column("cancellation_reason", Text, nullable=True),
    # Audit fields
    Column("created_by", Uuid, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    Column("updated_at", UTCDateTime, nullable=False, default=utcnow),
    # Soft delete (healthcare compliance)
    Column("deleted_at", UTCDateTime, nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'confirmed', 'in_progress', 'completed', 'cancelled', 'no_show')",
        name="appointments_status_check",
    ),
    CheckConstraint("duration_minutes > 0", name="appointments_duration_check"),
    CheckConstraint("token_number IS NULL OR token_number >= 1", name="appointments_token_check"),
    Index("idx_appointments_doctor_time", "tenant_id", "doctor_id", "appointment_time"),
    Index("idx_appointments_completed", "tenant_id", "doctor_id", "completed_at"),
)
