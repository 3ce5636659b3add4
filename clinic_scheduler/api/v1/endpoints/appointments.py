"""Appointment endpoints."""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from clinic_scheduler.core.timeutils import clinic_date_of, to_utc
from clinic_scheduler.dependencies import ActorId, AppointmentServiceDep, TenantId
from clinic_scheduler.schemas.appointments import (
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentTransition,
    SlotResponse,
    TokenPreviewResponse,
)

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    tenant_id: TenantId,
    actor_id: ActorId,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Book an appointment with a doctor.

    Returns 409 when the interval overlaps another active appointment of the
    same doctor.
    """
    return await service.create_appointment(tenant_id, data, created_by=actor_id)


@router.get(
    "/",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List a doctor's appointments for a day",
)
async def list_doctor_appointments(
    tenant_id: TenantId,
    service: AppointmentServiceDep,
    doctor_id: UUID = Query(...),
    day: date = Query(..., alias="date"),
) -> list[AppointmentResponse]:
    """List a doctor's appointments on a clinic day, ordered by time."""
    return await service.list_doctor_appointments(doctor_id, tenant_id, day)


@router.get(
    "/slots",
    response_model=list[SlotResponse],
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List available slots",
)
async def list_available_slots(
    tenant_id: TenantId,
    service: AppointmentServiceDep,
    doctor_id: UUID = Query(...),
    day: date = Query(..., alias="date"),
    slot_duration_minutes: int | None = Query(None),
) -> list[SlotResponse]:
    """
    Free slots in the doctor's working window.

    A listed slot is not reserved; it is re-checked when booked.
    """
    return await service.list_available_slots(doctor_id, tenant_id, day, slot_duration_minutes)


@router.get(
    "/token-preview",
    response_model=TokenPreviewResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Preview token for a time",
)
async def preview_token(
    tenant_id: TenantId,
    service: AppointmentServiceDep,
    doctor_id: UUID = Query(...),
    appointment_time: datetime = Query(...),
) -> TokenPreviewResponse:
    token = await service.preview_token(doctor_id, tenant_id, appointment_time)
    start = to_utc(appointment_time)
    return TokenPreviewResponse(
        doctor_id=doctor_id,
        appointment_date=clinic_date_of(start),
        appointment_time=start,
        token_number=token,
    )


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    tenant_id: TenantId,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    return await service.get_appointment(appointment_id, tenant_id)


@router.put(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def update_appointment_time(
    appointment_id: UUID,
    data: AppointmentReschedule,
    tenant_id: TenantId,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Move an appointment to a new time and/or duration.

    Only appointments that have not started can be moved.
    """
    return await service.update_appointment_time(appointment_id, tenant_id, data)


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment status",
)
async def transition_appointment(
    appointment_id: UUID,
    data: AppointmentTransition,
    tenant_id: TenantId,
    actor_id: ActorId,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Move an appointment along its lifecycle (confirm, start, complete, cancel, no-show).

    Returns 409 for a transition the lifecycle does not allow.
    """
    return await service.transition_appointment(
        appointment_id, tenant_id, data.status, actor_id=actor_id, reason=data.reason
    )


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Appointments"],
    summary="Delete appointment",
)
async def delete_appointment(
    appointment_id: UUID,
    tenant_id: TenantId,
    service: AppointmentServiceDep,
) -> None:
    """Soft delete an appointment; it stops counting towards slots, tokens and queues."""
    await service.soft_delete_appointment(appointment_id, tenant_id)
