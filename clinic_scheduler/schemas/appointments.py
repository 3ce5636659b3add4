"""Appointment schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from clinic_scheduler.config import settings


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    doctor_id: UUID
    patient_id: UUID
    appointment_time: datetime
    duration_minutes: int = Field(
        default=settings.default_appointment_duration_minutes,
        ge=settings.min_appointment_duration_minutes,
        le=settings.max_appointment_duration_minutes,
    )
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)


class AppointmentReschedule(BaseModel):
    """Schema for moving an appointment to a new time and/or duration."""

    appointment_time: datetime
    duration_minutes: int | None = Field(
        None,
        ge=settings.min_appointment_duration_minutes,
        le=settings.max_appointment_duration_minutes,
    )


class AppointmentTransition(BaseModel):
    """Schema for a lifecycle transition."""

    status: AppointmentStatus
    reason: str | None = Field(None, max_length=1000)

    @model_validator(mode="after")
    def reason_only_for_cancellation(self) -> "AppointmentTransition":
        """A reason is only recorded on cancellation."""
        if self.reason and self.status != AppointmentStatus.CANCELLED:
            raise ValueError("reason is only accepted when cancelling")
        return self


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    tenant_id: UUID
    doctor_id: UUID
    patient_id: UUID
    appointment_time: datetime
    duration_minutes: int
    token_number: int | None
    status: AppointmentStatus
    reason: str | None = None
    notes: str | None = None
    confirmed_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
    cancellation_reason: str | None = None
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SlotResponse(BaseModel):
    """A free slot in a doctor's working day."""

    slot_date: date
    start_time: datetime
    end_time: datetime
    start_label: str
    end_label: str
    duration_minutes: int


class TokenPreviewResponse(BaseModel):
    """Token a booking at the given time would receive right now."""

    doctor_id: UUID
    appointment_date: date
    appointment_time: datetime
    token_number: int
