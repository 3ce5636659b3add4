"""
M/M/1 queueing model.

Each doctor is a single server with Markovian (Poisson) arrivals and
exponentially distributed service times. With arrival rate λ and service rate
μ, in patients per hour, and utilization ρ = λ/μ, the queue is stable iff
ρ < 1, and then:

    W  = 1 / (μ - λ)      expected time in system (hours)
    Wq = ρ / (μ - λ)      expected time waiting in queue (hours)
    L  = ρ / (1 - ρ)      expected number in system
    Lq = ρ² / (1 - ρ)     expected number waiting

For ρ >= 1 the queue grows without bound and none of the above is evaluated.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class QueueMetrics:
    """Closed-form M/M/1 outputs. Formula fields are None when the queue is unstable."""

    arrival_rate: float
    service_rate: float
    utilization: float
    stable: bool
    wait_in_system_hours: float | None = None
    wait_in_queue_hours: float | None = None
    number_in_system: float | None = None
    number_in_queue: float | None = None

    @property
    def wait_in_system_minutes(self) -> float | None:
        if self.wait_in_system_hours is None:
            return None
        return self.wait_in_system_hours * 60

    @property
    def wait_in_queue_minutes(self) -> float | None:
        if self.wait_in_queue_hours is None:
            return None
        return self.wait_in_queue_hours * 60


def service_rate(
    completed_count: int,
    working_hours_per_day: float,
    lookback_days: int,
    min_rate: float,
) -> float:
    """μ: completed patients per working hour over the lookback window, floored at ``min_rate``."""
    if completed_count <= 0:
        return min_rate
    return max(completed_count / (working_hours_per_day * lookback_days), min_rate)


def arrival_rate(valid_appointment_count: int, clinic_hours_per_day: float) -> float:
    """λ: the day's active appointments spread over the clinic day."""
    return valid_appointment_count / clinic_hours_per_day


def mm1_metrics(arrival: float, service: float) -> QueueMetrics:
    """
    Evaluate the M/M/1 formulas.

    Args:
        arrival: λ in patients per hour, >= 0
        service: μ in patients per hour, > 0

    Returns:
        Metrics; only utilization and stability are set when ρ >= 1
    """
    if service <= 0:
        raise ValueError("service rate must be positive")
    if arrival < 0:
        raise ValueError("arrival rate cannot be negative")

    rho = arrival / service
    if rho >= 1.0:
        return QueueMetrics(
            arrival_rate=arrival,
            service_rate=service,
            utilization=rho,
            stable=False,
        )

    return QueueMetrics(
        arrival_rate=arrival,
        service_rate=service,
        utilization=rho,
        stable=True,
        wait_in_system_hours=1.0 / (service - arrival),
        wait_in_queue_hours=rho / (service - arrival),
        number_in_system=rho / (1.0 - rho),
        number_in_queue=(rho * rho) / (1.0 - rho),
    )


def position_multiplier(position: int, divisor: int) -> int:
    """
    Heuristic scaling of the base wait by queue position.

    Not part of the M/M/1 closed form: patients far back in the day wait
    proportionally longer than the model's mean suggests.
    """
    return max(1, position // divisor)
