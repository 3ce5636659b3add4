"""
Token sequencing.

A token is a patient's 1-based position in a doctor's day, ordered by
appointment time among active appointments:

    token(d, D, t) = 1 + |{a : doctor(a) = d, day(a) = D, time(a) <= t, a active}|

Tokens follow time order, not booking order. Booking an earlier slot after a
later one shifts the later patient's token up by one, so tokens are
recomputed for the whole day whenever its active set changes.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from clinic_scheduler.core.exceptions import InvariantViolationException
from clinic_scheduler.scheduling.overlap import is_active


def next_token(day_appointments: Iterable[Mapping[str, Any]], proposed_time: datetime) -> int:
    """Token a booking at ``proposed_time`` would receive among the given appointments."""
    ahead = sum(
        1
        for appointment in day_appointments
        if is_active(appointment) and appointment["appointment_time"] <= proposed_time
    )
    return ahead + 1


def sequence_tokens(day_appointments: Iterable[Mapping[str, Any]]) -> dict[UUID, int]:
    """Tokens 1..N for the day's active appointments, in appointment-time order."""
    active = sorted(
        (a for a in day_appointments if is_active(a)),
        key=lambda a: (a["appointment_time"], str(a["id"])),
    )
    return {appointment["id"]: index for index, appointment in enumerate(active, start=1)}


def verify_token_sequence(tokens: Iterable[int]) -> None:
    """
    Check that tokens are exactly 1..N.

    Raises:
        InvariantViolationException: On gaps, duplicates or non-positive tokens
    """
    ordered = sorted(tokens)
    if ordered != list(range(1, len(ordered) + 1)):
        raise InvariantViolationException(f"token sequence is not 1..N: {ordered}")
