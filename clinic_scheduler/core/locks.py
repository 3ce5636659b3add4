"""Per-doctor booking serialization.

Conflict detection, token sequencing and the write that follows them must run
as one unit per (tenant, doctor, clinic day). Two layers provide that:

* an in-process ``asyncio.Lock`` per key, which serializes workers sharing an
  event loop (single-process deployments and tests);
* on PostgreSQL, ``pg_advisory_xact_lock`` on a stable hash of the same key,
  taken inside the caller's transaction, which serializes across instances and
  is released by the database at commit or rollback.

Callers must commit or roll back before leaving the context.
"""

import asyncio
import hashlib
import weakref
from collections.abc import AsyncIterator, Iterable
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger(__name__)

LockKey = tuple[str, str, str]

# Locks disappear once no coroutine holds or awaits them
_local_locks: "weakref.WeakValueDictionary[LockKey, asyncio.Lock]" = weakref.WeakValueDictionary()


def _local_lock(key: LockKey) -> asyncio.Lock:
    lock = _local_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _local_locks[key] = lock
    return lock


def advisory_lock_id(key: LockKey) -> int:
    """Signed 64-bit id for ``pg_advisory_xact_lock``."""
    digest = hashlib.blake2b(":".join(key).encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def booking_keys(tenant_id: UUID, doctor_id: UUID, days: Iterable[date]) -> list[LockKey]:
    """Lock keys in a fixed order so multi-day reschedules cannot deadlock."""
    return sorted({(str(tenant_id), str(doctor_id), day.isoformat()) for day in days})


@asynccontextmanager
async def booking_lock(
    db: AsyncSession,
    tenant_id: UUID,
    doctor_id: UUID,
    days: Iterable[date],
) -> AsyncIterator[None]:
    """Hold the booking lock for a doctor's clinic day(s)."""
    keys = booking_keys(tenant_id, doctor_id, days)

    async with AsyncExitStack() as stack:
        for key in keys:
            await stack.enter_async_context(_local_lock(key))

        if db.get_bind().dialect.name == "postgresql":
            for key in keys:
                await db.execute(select(func.pg_advisory_xact_lock(advisory_lock_id(key))))

        logger.debug("booking_lock_acquired", keys=[":".join(k) for k in keys])
        yield
