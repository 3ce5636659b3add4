"""Tests for the M/M/1 formulas."""

import pytest

from clinic_scheduler.scheduling.queueing import (
    arrival_rate,
    mm1_metrics,
    position_multiplier,
    service_rate,
)


def test_stable_queue_closed_forms():
    """λ=4/h, μ=6/h gives ρ=2/3, W=30 min, Wq=20 min, L=2, Lq=4/3."""
    metrics = mm1_metrics(4.0, 6.0)

    assert metrics.stable is True
    assert metrics.utilization == pytest.approx(2 / 3)
    assert metrics.wait_in_system_hours == pytest.approx(0.5)
    assert metrics.wait_in_system_minutes == pytest.approx(30.0)
    assert metrics.wait_in_queue_minutes == pytest.approx(20.0)
    assert metrics.number_in_system == pytest.approx(2.0)
    assert metrics.number_in_queue == pytest.approx(4 / 3)


def test_overloaded_queue_is_unstable_without_outputs():
    metrics = mm1_metrics(6.0, 5.0)

    assert metrics.stable is False
    assert metrics.utilization == pytest.approx(1.2)
    assert metrics.wait_in_system_minutes is None
    assert metrics.wait_in_queue_minutes is None
    assert metrics.number_in_system is None
    assert metrics.number_in_queue is None


def test_saturated_queue_is_unstable():
    assert mm1_metrics(5.0, 5.0).stable is False


def test_empty_day_has_zero_utilization():
    metrics = mm1_metrics(0.0, 1.0)

    assert metrics.stable is True
    assert metrics.utilization == 0.0
    assert metrics.wait_in_system_minutes == pytest.approx(60.0)
    assert metrics.number_in_queue == 0.0


@pytest.mark.parametrize("arrival,service", [(1.0, 0.0), (1.0, -1.0), (-0.5, 2.0)])
def test_invalid_rates_are_rejected(arrival, service):
    with pytest.raises(ValueError):
        mm1_metrics(arrival, service)


def test_service_rate_over_lookback_window():
    # 56 completed over 7 days of 8 hours
    assert service_rate(56, 8.0, 7, 0.1) == pytest.approx(1.0)


def test_service_rate_floor():
    assert service_rate(0, 8.0, 7, 0.1) == 0.1
    assert service_rate(1, 8.0, 7, 0.1) == 0.1


def test_arrival_rate_spreads_over_clinic_hours():
    assert arrival_rate(4, 8.0) == pytest.approx(0.5)
    assert arrival_rate(0, 8.0) == 0.0


@pytest.mark.parametrize(
    "position,expected",
    [(1, 1), (4, 1), (5, 1), (9, 1), (10, 2), (14, 2), (15, 3), (27, 5)],
)
def test_position_multiplier(position, expected):
    assert position_multiplier(position, 5) == expected
