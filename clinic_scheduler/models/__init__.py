"""Database models."""

from clinic_scheduler.models.appointments import appointments, metadata
from clinic_scheduler.models.queue_snapshots import queue_snapshots

__all__ = [
    "appointments",
    "metadata",
    "queue_snapshots",
]
