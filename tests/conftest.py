import os
import tempfile
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, date, datetime, time, timedelta
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Tests run against a throw-away SQLite file unless TEST_DATABASE_URL points elsewhere.
# These must be set before the application settings are first imported.
_tmp_dir = Path(tempfile.mkdtemp(prefix="clinic_scheduler_tests_"))
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_tmp_dir / 'test.db'}"
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["CACHE_ENABLED"] = "false"
os.environ["CLINIC_TIMEZONE"] = "UTC"
os.environ["SNAPSHOT_SCHEDULER_ENABLED"] = "false"
os.environ.setdefault("LOG_FORMAT", "console")

load_dotenv()

from clinic_scheduler.database import get_db  # noqa: E402
from clinic_scheduler.main import app  # noqa: E402
from clinic_scheduler.models import appointments, metadata  # noqa: E402

# Tuesday, mid-morning clinic time
FIXED_NOW = datetime(2030, 1, 15, 10, 0, tzinfo=UTC)
TEST_DAY = FIXED_NOW.date()

test_engine = create_async_engine(
    TEST_DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://"),
    echo=False,
    poolclass=NullPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session over a fresh schema."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
def session_factory(db_session: AsyncSession) -> async_sessionmaker[AsyncSession]:
    """Factory for extra sessions on the same schema (concurrent callers, jobs)."""
    return TestSessionLocal


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def test_day() -> date:
    return TEST_DAY


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Frozen clock for services."""
    return lambda: FIXED_NOW


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def doctor_id() -> UUID:
    return uuid4()


@pytest.fixture
def patient_id() -> UUID:
    return uuid4()


@pytest.fixture
def at() -> Callable[..., datetime]:
    """Build a UTC instant on the test day (or another day)."""

    def _at(hour: int, minute: int = 0, day: date = TEST_DAY) -> datetime:
        return datetime.combine(day, time(hour, minute), tzinfo=UTC)

    return _at


@pytest.fixture
def insert_appointment(
    db_session: AsyncSession,
    tenant_id: UUID,
    doctor_id: UUID,
) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Insert an appointment row directly, bypassing booking rules."""

    async def _insert(appointment_time: datetime, **overrides: Any) -> dict[str, Any]:
        values: dict[str, Any] = {
            "id": uuid4(),
            "tenant_id": tenant_id,
            "doctor_id": doctor_id,
            "patient_id": uuid4(),
            "appointment_time": appointment_time,
            "duration_minutes": 30,
            "status": "scheduled",
            "created_at": FIXED_NOW - timedelta(days=30),
            "updated_at": FIXED_NOW - timedelta(days=30),
        }
        values.update(overrides)
        if values["status"] == "completed" and "completed_at" not in overrides:
            values["completed_at"] = appointment_time + timedelta(
                minutes=values["duration_minutes"]
            )
        await db_session.execute(insert(appointments).values(**values))
        await db_session.commit()
        return values

    return _insert


@pytest.fixture
def sample_appointment_data(doctor_id: UUID, patient_id: UUID) -> dict:
    """Booking request body for endpoint tests."""
    return {
        "doctor_id": str(doctor_id),
        "patient_id": str(patient_id),
        "appointment_time": "2030-01-15T11:00:00Z",
        "duration_minutes": 30,
        "reason": "Regular checkup",
    }


@pytest.fixture
def tenant_headers(tenant_id: UUID) -> dict[str, str]:
    return {"X-Tenant-ID": str(tenant_id)}
