"""Backfill daily queue snapshots for a range of clinic days.

Usage:
    python scripts/compute_snapshots.py 2030-01-01 [2030-01-31]

Recomputing a day overwrites its snapshots, so the script can be re-run.
"""

import asyncio
import sys
from datetime import date, timedelta

from clinic_scheduler.database import engine
from clinic_scheduler.middleware.logging import configure_logging
from clinic_scheduler.tasks.snapshot_jobs import compute_daily_snapshots


async def backfill(first_day: date, last_day: date) -> int:
    failed = 0
    day = first_day
    while day <= last_day:
        stats = await compute_daily_snapshots(day=day)
        print(f"{day}: saved={stats['saved']} failed={stats['failed']}")
        failed += stats["failed"]
        day += timedelta(days=1)

    await engine.dispose()
    return failed


if __name__ == "__main__":
    if not 2 <= len(sys.argv) <= 3:
        print(__doc__)
        sys.exit(2)

    configure_logging()
    start = date.fromisoformat(sys.argv[1])
    end = date.fromisoformat(sys.argv[2]) if len(sys.argv) == 3 else start
    sys.exit(1 if asyncio.run(backfill(start, end)) else 0)
