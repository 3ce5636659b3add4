"""Queue estimate schemas."""

from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class EstimateConfidence(str, Enum):
    """How much weight a wait estimate deserves."""

    MEDIUM = "medium"
    LOW = "low"


class WaitTimeEstimate(BaseModel):
    """Per-appointment wait estimate."""

    appointment_id: UUID
    estimated_wait_minutes: int
    # Closed-form M/M/1 time in system, before the position heuristic
    base_wait_minutes: int | None = None
    position_multiplier: int = 1
    stable: bool
    confidence: EstimateConfidence
    arrival_rate: float | None = None
    service_rate: float | None = None
    utilization: float | None = None


class QueuePosition(BaseModel):
    """Position of an appointment in its doctor's day."""

    appointment_id: UUID
    position: int
    queue_length: int
    ahead_count: int


class QueueStatus(BaseModel):
    """Live queue summary for display boards."""

    doctor_id: UUID
    current_token: int | None = None
    next_token: int | None = None
    patients_waiting: int
    avg_wait_minutes: int
    utilization: float
    stable: bool
    timestamp: datetime


class QueueSnapshotResponse(BaseModel):
    """Stored daily queue metrics."""

    id: UUID
    tenant_id: UUID
    doctor_id: UUID
    snapshot_date: date
    arrival_rate: float
    service_rate: float
    utilization: float
    is_stable: bool
    avg_wait_minutes: float | None = None
    avg_wait_in_queue_minutes: float | None = None
    avg_system_length: float | None = None
    avg_queue_length: float | None = None
    total_patients: int
    completed_appointments: int
    window_start: time
    window_end: time
    computed_at: datetime

    model_config = {"from_attributes": True}
