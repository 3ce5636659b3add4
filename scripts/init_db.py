"""Create the scheduling tables directly from the table metadata.

Useful for local development and throw-away databases; deployed
environments should run the Alembic migrations instead.
"""

import asyncio

from clinic_scheduler.database import engine
from clinic_scheduler.models import metadata


async def init_db(drop_existing: bool = False) -> None:
    """Create the appointments and queue_snapshots tables."""
    async with engine.begin() as conn:
        if drop_existing:
            await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print(f"✓ Created tables: {', '.join(sorted(metadata.tables))}")


if __name__ == "__main__":
    import sys

    asyncio.run(init_db(drop_existing="--drop" in sys.argv[1:]))
