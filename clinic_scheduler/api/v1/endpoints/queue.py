"""Queue endpoints: positions, wait estimates, live status and daily snapshots."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from clinic_scheduler.dependencies import QueueServiceDep, TenantId
from clinic_scheduler.schemas.queue import (
    QueuePosition,
    QueueSnapshotResponse,
    QueueStatus,
    WaitTimeEstimate,
)

router = APIRouter()

# Snapshots above this utilization are reported as running hot
HIGH_UTILIZATION_THRESHOLD = 0.85


@router.get(
    "/appointments/{appointment_id}/position",
    response_model=QueuePosition,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Get queue position",
)
async def get_queue_position(
    appointment_id: UUID,
    tenant_id: TenantId,
    service: QueueServiceDep,
    doctor_id: UUID | None = Query(None),
    day: date | None = Query(None, alias="date"),
) -> QueuePosition:
    return await service.get_queue_position(appointment_id, tenant_id, doctor_id, day)


@router.get(
    "/appointments/{appointment_id}/wait-time",
    response_model=WaitTimeEstimate,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Estimate wait time",
)
async def estimate_wait_time(
    appointment_id: UUID,
    tenant_id: TenantId,
    service: QueueServiceDep,
) -> WaitTimeEstimate:
    """
    Estimated wait for an appointment.

    An overloaded queue still answers, with ``stable=false`` and low confidence.
    """
    return await service.estimate_wait_time(appointment_id, tenant_id)


@router.get(
    "/doctors/{doctor_id}/status",
    response_model=QueueStatus,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Get live queue status",
)
async def get_queue_status(
    doctor_id: UUID,
    tenant_id: TenantId,
    service: QueueServiceDep,
) -> QueueStatus:
    return await service.get_queue_status(doctor_id, tenant_id)


@router.post(
    "/doctors/{doctor_id}/snapshots/{snapshot_date}",
    response_model=QueueSnapshotResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Compute daily snapshot",
)
async def compute_daily_snapshot(
    doctor_id: UUID,
    snapshot_date: date,
    tenant_id: TenantId,
    service: QueueServiceDep,
) -> QueueSnapshotResponse:
    """Compute and store a doctor's queue metrics for a day. Safe to repeat."""
    return await service.compute_daily_snapshot(doctor_id, tenant_id, snapshot_date)


@router.get(
    "/doctors/{doctor_id}/snapshots/{snapshot_date}",
    response_model=QueueSnapshotResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Get daily snapshot",
)
async def get_snapshot(
    doctor_id: UUID,
    snapshot_date: date,
    tenant_id: TenantId,
    service: QueueServiceDep,
) -> QueueSnapshotResponse:
    return await service.get_snapshot(doctor_id, tenant_id, snapshot_date)


@router.get(
    "/doctors/{doctor_id}/snapshots",
    response_model=list[QueueSnapshotResponse],
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="List daily snapshots",
)
async def list_snapshots(
    doctor_id: UUID,
    tenant_id: TenantId,
    service: QueueServiceDep,
    from_date: date = Query(...),
    to_date: date = Query(...),
    high_utilization: bool = Query(False),
    unstable_only: bool = Query(False),
) -> list[QueueSnapshotResponse]:
    """
    Stored snapshots in a date range.

    Args:
        high_utilization: Only days with utilization above 0.85
        unstable_only: Only days where the queue was unstable
    """
    return await service.list_snapshots(
        doctor_id,
        tenant_id,
        from_date,
        to_date,
        min_utilization=HIGH_UTILIZATION_THRESHOLD if high_utilization else None,
        unstable_only=unstable_only,
    )
