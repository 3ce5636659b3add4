"""
Daily queue snapshot job.

Once a day the scheduler stores yesterday's M/M/1 metrics for every doctor
that had appointments. Each (tenant, doctor) pair runs in its own session, so
one failing doctor does not stop the rest.
"""

from datetime import date, timedelta
from typing import Any

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduler.config import settings
from clinic_scheduler.core.redis_client import CacheManager, get_cache_manager
from clinic_scheduler.core.timeutils import clinic_date_of, clinic_day_bounds, utcnow
from clinic_scheduler.database import AsyncSessionLocal
from clinic_scheduler.models.appointments import appointments
from clinic_scheduler.services.queue_service import QueueService

logger = structlog.get_logger(__name__)

SNAPSHOT_JOB_ID = "daily_queue_snapshots"

_scheduler: AsyncIOScheduler | None = None


async def doctors_with_appointments(db: AsyncSession, day: date) -> list[tuple[Any, Any]]:
    """Distinct (tenant, doctor) pairs with a live appointment on a clinic day."""
    day_start, day_end = clinic_day_bounds(day)
    stmt = (
        select(appointments.c.tenant_id, appointments.c.doctor_id)
        .where(
            and_(
                appointments.c.appointment_time >= day_start,
                appointments.c.appointment_time < day_end,
                appointments.c.deleted_at.is_(None),
            )
        )
        .distinct()
    )
    result = await db.execute(stmt)
    return [(row.tenant_id, row.doctor_id) for row in result]


async def compute_daily_snapshots(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    day: date | None = None,
    cache: CacheManager | None = None,
) -> dict[str, int]:
    """
    Store snapshots for every doctor active on ``day`` (default: yesterday).

    Returns:
        Counts of saved and failed snapshots
    """
    day = day or clinic_date_of(utcnow()) - timedelta(days=1)
    stats = {"saved": 0, "failed": 0}

    async with session_factory() as db:
        pairs = await doctors_with_appointments(db, day)

    logger.info("snapshot_job_started", day=str(day), doctors=len(pairs))

    for tenant_id, doctor_id in pairs:
        async with session_factory() as db:
            try:
                await QueueService(db, cache).compute_daily_snapshot(doctor_id, tenant_id, day)
                stats["saved"] += 1
            except Exception as e:
                stats["failed"] += 1
                logger.error(
                    "snapshot_job_failed",
                    day=str(day),
                    tenant_id=str(tenant_id),
                    doctor_id=str(doctor_id),
                    error=str(e),
                )

    logger.info("snapshot_job_completed", day=str(day), **stats)
    return stats


async def _run_scheduled_snapshots() -> None:
    await compute_daily_snapshots(cache=get_cache_manager())


def start_snapshot_scheduler() -> AsyncIOScheduler:
    """Start the scheduler with the daily snapshot job. Must run inside the event loop."""
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        return _scheduler

    _scheduler = AsyncIOScheduler(
        timezone=settings.clinic_timezone,
        job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 3600},
    )
    _scheduler.add_job(
        _run_scheduled_snapshots,
        CronTrigger(
            hour=settings.snapshot_cron_hour,
            minute=settings.snapshot_cron_minute,
            timezone=settings.clinic_timezone,
        ),
        id=SNAPSHOT_JOB_ID,
        replace_existing=True,
    )
    _scheduler.start()
    logger.info(
        "snapshot_scheduler_started",
        hour=settings.snapshot_cron_hour,
        minute=settings.snapshot_cron_minute,
        timezone=settings.clinic_timezone,
    )
    return _scheduler


def shutdown_snapshot_scheduler(wait: bool = False) -> None:
    """Stop the scheduler if it is running."""
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=wait)
        logger.info("snapshot_scheduler_stopped")
    _scheduler = None
