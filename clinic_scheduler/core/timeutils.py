"""Clinic calendar helpers.

All instants are handled as timezone-aware UTC datetimes. Calendar days and
working hours are wall-clock values in the clinic timezone.
"""

from datetime import UTC, date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from clinic_scheduler.config import settings


@lru_cache
def clinic_tz() -> ZoneInfo:
    """Timezone that defines the clinic's calendar days."""
    return ZoneInfo(settings.clinic_timezone)


def utcnow() -> datetime:
    """Current instant in UTC."""
    return datetime.now(UTC)


def to_utc(value: datetime) -> datetime:
    """Normalise to UTC; naive values are read as clinic wall-clock time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=clinic_tz())
    return value.astimezone(UTC)


def clinic_date_of(instant: datetime) -> date:
    """Calendar day (clinic timezone) an instant falls on."""
    return to_utc(instant).astimezone(clinic_tz()).date()


def at_clinic_time(day: date, wall_clock: time) -> datetime:
    """UTC instant of a wall-clock time on a clinic day."""
    return datetime.combine(day, wall_clock, tzinfo=clinic_tz()).astimezone(UTC)


def clinic_day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open UTC range [start, end) covering one clinic day."""
    start = at_clinic_time(day, time(0, 0))
    end = at_clinic_time(day + timedelta(days=1), time(0, 0))
    return start, end


def format_clinic_time(instant: datetime) -> str:
    """HH:MM label of an instant in clinic time."""
    return to_utc(instant).astimezone(clinic_tz()).strftime("%H:%M")
