"""
Appointment lifecycle.

The allowed transitions form a DAG; no edge can be walked backwards:

    SCHEDULED -> CONFIRMED -> IN_PROGRESS -> COMPLETED
    SCHEDULED -> CANCELLED
    CONFIRMED -> CANCELLED
    CONFIRMED -> NO_SHOW
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from clinic_scheduler.core.exceptions import (
    InvalidTransitionException,
    InvariantViolationException,
)
from clinic_scheduler.schemas.appointments import AppointmentStatus

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# Appointments in these states free their slot and drop out of the queue
INACTIVE_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})

WAITING_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})

# Only appointments that have not started can be moved
RESCHEDULABLE_STATUSES = WAITING_STATUSES


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Check whether ``current -> target`` is an edge of the lifecycle."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    """
    Reject a status change that is not an allowed edge.

    Raises:
        InvalidTransitionException: If the edge does not exist
    """
    if not can_transition(current, target):
        raise InvalidTransitionException(current.value, target.value)


def transition_values(
    target: AppointmentStatus,
    now: datetime,
    actor_id: UUID | None = None,
    reason: str | None = None,
) -> dict[str, Any]:
    """Column updates that accompany a move into ``target``."""
    values: dict[str, Any] = {"status": target.value, "updated_at": now}

    if target == AppointmentStatus.CONFIRMED:
        values["confirmed_at"] = now
    elif target == AppointmentStatus.IN_PROGRESS:
        values["started_at"] = now
    elif target == AppointmentStatus.COMPLETED:
        values["completed_at"] = now
    elif target == AppointmentStatus.CANCELLED:
        values["cancelled_at"] = now
        values["cancelled_by"] = actor_id
        values["cancellation_reason"] = reason

    return values


def check_state_invariants(appointment: Mapping[str, Any]) -> None:
    """
    Verify that status and lifecycle timestamps agree.

    Raises:
        InvariantViolationException: If the record is internally inconsistent
    """
    status = AppointmentStatus(appointment["status"])
    confirmed_at = appointment.get("confirmed_at")
    started_at = appointment.get("started_at")
    completed_at = appointment.get("completed_at")

    if status == AppointmentStatus.COMPLETED and completed_at is None:
        raise InvariantViolationException("COMPLETED status requires completed_at")
    if status == AppointmentStatus.CANCELLED and appointment.get("cancelled_at") is None:
        raise InvariantViolationException("CANCELLED status requires cancelled_at")
    if status == AppointmentStatus.IN_PROGRESS and started_at is None:
        raise InvariantViolationException("IN_PROGRESS status requires started_at")
    if confirmed_at and started_at and started_at < confirmed_at:
        raise InvariantViolationException("started_at cannot be before confirmed_at")
    if started_at and completed_at and completed_at < started_at:
        raise InvariantViolationException("completed_at cannot be before started_at")

    token = appointment.get("token_number")
    if token is not None and token < 1:
        raise InvariantViolationException(f"token_number must be positive, got {token}")
