"""
Overlap detection.

Appointments occupy half-open intervals ``[start, start + duration)``. Two
intervals ``[a, b)`` and ``[c, d)`` overlap iff ``a < d and c < b``, so
back-to-back appointments never conflict.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any, NamedTuple
from uuid import UUID

from clinic_scheduler.schemas.appointments import AppointmentStatus
from clinic_scheduler.scheduling.state_machine import INACTIVE_STATUSES


class Interval(NamedTuple):
    """Half-open time range."""

    start: datetime
    end: datetime


def overlaps(a: Interval, b: Interval) -> bool:
    """Half-open interval intersection test."""
    return a.start < b.end and b.start < a.end


def appointment_interval(appointment: Mapping[str, Any]) -> Interval:
    """Occupied interval of an appointment record."""
    start = appointment["appointment_time"]
    return Interval(start, start + timedelta(minutes=appointment["duration_minutes"]))


def is_active(appointment: Mapping[str, Any]) -> bool:
    """Active appointments hold their slot: not cancelled, no-show or tombstoned."""
    if appointment.get("deleted_at") is not None:
        return False
    return AppointmentStatus(appointment["status"]) not in INACTIVE_STATUSES


def find_conflicts(
    candidate: Interval,
    existing: Iterable[Mapping[str, Any]],
    exclude_id: UUID | None = None,
) -> list[Mapping[str, Any]]:
    """
    Active appointments whose interval intersects ``candidate``.

    Args:
        candidate: Proposed interval
        existing: Appointment records to test against
        exclude_id: Appointment to ignore (re-validating an update against itself)

    Returns:
        Conflicting records, in input order
    """
    return [
        appointment
        for appointment in existing
        if appointment["id"] != exclude_id
        and is_active(appointment)
        and overlaps(candidate, appointment_interval(appointment))
    ]
