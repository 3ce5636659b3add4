"""Tests for the appointment lifecycle."""

from datetime import UTC, datetime, timedelta
from itertools import product
from uuid import uuid4

import pytest

from clinic_scheduler.core.exceptions import (
    InvalidTransitionException,
    InvariantViolationException,
)
from clinic_scheduler.schemas.appointments import AppointmentStatus
from clinic_scheduler.scheduling.state_machine import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    can_transition,
    check_state_invariants,
    transition_values,
    validate_transition,
)

NOW = datetime(2030, 1, 15, 10, 0, tzinfo=UTC)

EXPECTED_EDGES = {
    (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED),
    (AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED),
    (AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS),
    (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED),
    (AppointmentStatus.CONFIRMED, AppointmentStatus.NO_SHOW),
    (AppointmentStatus.IN_PROGRESS, AppointmentStatus.COMPLETED),
}


def test_allowed_edges_are_exactly_the_lifecycle():
    """Every (current, target) pair is allowed iff it is a lifecycle edge."""
    for current, target in product(AppointmentStatus, repeat=2):
        assert can_transition(current, target) == ((current, target) in EXPECTED_EDGES)


def test_no_self_transitions():
    for status in AppointmentStatus:
        assert not can_transition(status, status)


def test_terminal_statuses_have_no_outgoing_edges():
    assert TERMINAL_STATUSES == {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }
    for status in TERMINAL_STATUSES:
        assert not ALLOWED_TRANSITIONS[status]


def test_validate_transition_rejects_with_current_and_target():
    with pytest.raises(InvalidTransitionException) as exc_info:
        validate_transition(AppointmentStatus.COMPLETED, AppointmentStatus.SCHEDULED)

    assert exc_info.value.current == "completed"
    assert exc_info.value.target == "scheduled"
    assert exc_info.value.status_code == 409


def test_scheduled_cannot_skip_to_in_progress():
    with pytest.raises(InvalidTransitionException):
        validate_transition(AppointmentStatus.SCHEDULED, AppointmentStatus.IN_PROGRESS)


def test_transition_values_stamp_timestamps():
    actor = uuid4()

    assert transition_values(AppointmentStatus.CONFIRMED, NOW)["confirmed_at"] == NOW
    assert transition_values(AppointmentStatus.IN_PROGRESS, NOW)["started_at"] == NOW
    assert transition_values(AppointmentStatus.COMPLETED, NOW)["completed_at"] == NOW

    cancelled = transition_values(AppointmentStatus.CANCELLED, NOW, actor, "sick")
    assert cancelled["cancelled_at"] == NOW
    assert cancelled["cancelled_by"] == actor
    assert cancelled["cancellation_reason"] == "sick"
    assert cancelled["status"] == "cancelled"
    assert cancelled["updated_at"] == NOW


def test_no_show_only_changes_status():
    values = transition_values(AppointmentStatus.NO_SHOW, NOW)
    assert set(values) == {"status", "updated_at"}


@pytest.mark.parametrize(
    "record",
    [
        {"status": "completed"},
        {"status": "cancelled"},
        {"status": "in_progress"},
        {
            "status": "completed",
            "confirmed_at": NOW,
            "started_at": NOW - timedelta(minutes=5),
            "completed_at": NOW + timedelta(minutes=30),
        },
        {
            "status": "completed",
            "started_at": NOW,
            "completed_at": NOW - timedelta(minutes=1),
        },
        {"status": "scheduled", "token_number": 0},
    ],
)
def test_check_state_invariants_rejects_inconsistent_records(record):
    with pytest.raises(InvariantViolationException):
        check_state_invariants(record)


def test_check_state_invariants_accepts_full_lifecycle():
    check_state_invariants(
        {
            "status": "completed",
            "confirmed_at": NOW,
            "started_at": NOW + timedelta(minutes=5),
            "completed_at": NOW + timedelta(minutes=35),
            "token_number": 3,
        }
    )
