"""
Free-slot enumeration.

A single left-to-right sweep over the occupied intervals sorted by start:
emit back-to-back slots from the cursor while they fit before the next
occupied interval, then jump the cursor past that interval. Runs in
O(n log n) for the sort and O(n + slots) for the sweep.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta

from clinic_scheduler.scheduling.overlap import Interval


def enumerate_free_slots(
    work_start: datetime,
    work_end: datetime,
    occupied: Iterable[Interval],
    duration: timedelta,
    not_before: datetime | None = None,
) -> list[Interval]:
    """
    Free slots of a fixed duration inside a working window.

    Args:
        work_start: Start of the working window
        work_end: End of the working window (exclusive)
        occupied: Busy intervals, in any order; they may extend past the window
        duration: Slot length, must be positive
        not_before: When set, drop slots that do not start strictly after it

    Returns:
        Ordered, pairwise disjoint slots that avoid every occupied interval
    """
    if duration <= timedelta(0):
        raise ValueError("slot duration must be positive")

    slots: list[Interval] = []
    cursor = work_start

    for busy in sorted(occupied):
        gap_end = min(busy.start, work_end)
        while cursor + duration <= gap_end:
            slots.append(Interval(cursor, cursor + duration))
            cursor += duration
        cursor = max(cursor, busy.end)

    while cursor + duration <= work_end:
        slots.append(Interval(cursor, cursor + duration))
        cursor += duration

    if not_before is not None:
        slots = [slot for slot in slots if slot.start > not_before]

    return slots
