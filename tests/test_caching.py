"""Tests for the Redis-backed queue estimate cache."""

from datetime import timedelta
from fnmatch import fnmatch
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
import redis

from clinic_scheduler.core.redis_client import CacheManager
from clinic_scheduler.schemas.appointments import AppointmentCreate, AppointmentReschedule
from clinic_scheduler.services.appointment_service import AppointmentService
from clinic_scheduler.services.queue_service import QueueService


@pytest.fixture
def fake_redis():
    """MagicMock Redis backed by a dict, enough for CacheManager."""
    store: dict[str, str] = {}
    mock_redis = MagicMock()
    mock_redis.store = store
    mock_redis.get.side_effect = store.get
    mock_redis.set.side_effect = lambda key, value: store.__setitem__(key, value)
    mock_redis.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
    mock_redis.keys.side_effect = lambda pattern: [k for k in store if fnmatch(k, pattern)]

    def delete(*keys):
        return sum(store.pop(key, None) is not None for key in keys)

    mock_redis.delete.side_effect = delete
    return mock_redis


@pytest.fixture
def cache(fake_redis):
    return CacheManager(redis_client=fake_redis)


@pytest.fixture
def broken_cache():
    mock_redis = MagicMock()
    for method in ("get", "set", "setex", "keys", "delete"):
        getattr(mock_redis, method).side_effect = redis.ConnectionError("connection refused")
    return CacheManager(redis_client=mock_redis)


def test_cache_manager_get_json():
    """Test CacheManager get_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    # Test cache miss
    mock_redis.get.return_value = None
    assert cache_manager.get_json("queue:t:d:status") is None
    mock_redis.get.assert_called_once_with("queue:t:d:status")

    # Test cache hit
    mock_redis.reset_mock()
    mock_redis.get.return_value = '{"patients_waiting": 3, "stable": true}'
    assert cache_manager.get_json("queue:t:d:status") == {"patients_waiting": 3, "stable": True}


def test_cache_manager_set_json():
    """Test CacheManager set_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.set_json("queue:t:d:service_rate:2030-01-15", 1.25) is True
    mock_redis.set.assert_called_once_with("queue:t:d:service_rate:2030-01-15", "1.25")

    mock_redis.reset_mock()
    assert cache_manager.set_json("queue:t:d:service_rate:2030-01-15", 1.25, ttl=3600) is True
    mock_redis.setex.assert_called_once_with("queue:t:d:service_rate:2030-01-15", 3600, "1.25")


def test_cache_manager_delete_pattern():
    """Test CacheManager delete_pattern method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    mock_redis.keys.return_value = [
        "queue:t:d:status",
        "queue:t:d:arrival_rate:2030-01-15",
        "queue:t:d:wait:abc",
    ]
    mock_redis.delete.return_value = 3

    assert cache_manager.delete_pattern("queue:t:d:*") == 3
    mock_redis.keys.assert_called_once_with("queue:t:d:*")


def test_cache_manager_fails_open(broken_cache):
    assert broken_cache.get_json("queue:t:d:status") is None
    assert broken_cache.set_json("queue:t:d:status", {"stable": True}, ttl=30) is False
    assert broken_cache.delete("queue:t:d:status") is False
    assert broken_cache.delete_pattern("queue:t:d:*") == 0


@pytest.mark.asyncio
async def test_service_rate_is_cached(
    db_session, cache, fake_redis, clock, insert_appointment, tenant_id, doctor_id, at, test_day
):
    queue = QueueService(db_session, cache=cache, clock=clock)
    yesterday = test_day - timedelta(days=1)
    for i in range(56):
        await insert_appointment(at(0, day=yesterday) + timedelta(minutes=20 * i), status="completed")

    assert await queue.calculate_service_rate(doctor_id, tenant_id) == pytest.approx(1.0)
    assert f"queue:{tenant_id}:{doctor_id}:service_rate:{test_day}" in fake_redis.store

    # A new completion is not seen until the cached rate expires or is evicted
    await insert_appointment(at(8), status="completed")
    assert await queue.calculate_service_rate(doctor_id, tenant_id) == pytest.approx(1.0)
    assert await queue.calculate_service_rate(
        doctor_id, tenant_id, use_cache=False
    ) == pytest.approx(57 / 56)


@pytest.mark.asyncio
async def test_booking_evicts_queue_caches(
    db_session, cache, fake_redis, clock, tenant_id, doctor_id, at
):
    service = AppointmentService(db_session, cache=cache, clock=clock)
    await service.queue.get_queue_status(doctor_id, tenant_id)

    other_doctor_key = f"queue:{tenant_id}:{uuid4()}:status"
    fake_redis.store[other_doctor_key] = "{}"
    assert f"queue:{tenant_id}:{doctor_id}:status" in fake_redis.store

    await service.create_appointment(
        tenant_id,
        AppointmentCreate(doctor_id=doctor_id, patient_id=uuid4(), appointment_time=at(11)),
    )

    assert not [k for k in fake_redis.store if k.startswith(f"queue:{tenant_id}:{doctor_id}:")]
    assert other_doctor_key in fake_redis.store


@pytest.mark.asyncio
async def test_cached_queue_status_is_served(
    db_session, cache, clock, insert_appointment, tenant_id, doctor_id, at
):
    queue = QueueService(db_session, cache=cache, clock=clock)
    first = await queue.get_queue_status(doctor_id, tenant_id)
    assert first.patients_waiting == 0

    # A direct write bypasses eviction, so the cached board is still served
    await insert_appointment(at(11))
    cached = await queue.get_queue_status(doctor_id, tenant_id)
    assert cached == first

    queue.evict_queue_caches(tenant_id, doctor_id)
    assert (await queue.get_queue_status(doctor_id, tenant_id)).patients_waiting == 1


@pytest.mark.asyncio
async def test_snapshot_ignores_cached_rates(
    db_session, cache, fake_redis, clock, insert_appointment, tenant_id, doctor_id, at, test_day
):
    queue = QueueService(db_session, cache=cache, clock=clock)
    await insert_appointment(at(10))
    fake_redis.store[f"queue:{tenant_id}:{doctor_id}:service_rate:{test_day}"] = "99.0"
    fake_redis.store[f"queue:{tenant_id}:{doctor_id}:arrival_rate:{test_day}"] = "42.0"

    snapshot = await queue.compute_daily_snapshot(doctor_id, tenant_id, test_day)

    assert snapshot.service_rate == pytest.approx(0.1)
    assert snapshot.arrival_rate == pytest.approx(1 / 8)


@pytest.mark.asyncio
async def test_recomputed_snapshot_replaces_cached_copy(
    db_session, cache, fake_redis, clock, insert_appointment, tenant_id, doctor_id, at, test_day
):
    queue = QueueService(db_session, cache=cache, clock=clock)
    await insert_appointment(at(10))
    await queue.compute_daily_snapshot(doctor_id, tenant_id, test_day)
    await queue.get_snapshot(doctor_id, tenant_id, test_day)
    assert f"queue_snapshot:{tenant_id}:{doctor_id}:{test_day}" in fake_redis.store

    await insert_appointment(at(11))
    await queue.compute_daily_snapshot(doctor_id, tenant_id, test_day)

    assert (await queue.get_snapshot(doctor_id, tenant_id, test_day)).total_patients == 2


@pytest.mark.asyncio
async def test_redis_outage_does_not_fail_requests(
    db_session, broken_cache, clock, tenant_id, doctor_id, at
):
    service = AppointmentService(db_session, cache=broken_cache, clock=clock)

    created = await service.create_appointment(
        tenant_id,
        AppointmentCreate(doctor_id=doctor_id, patient_id=uuid4(), appointment_time=at(11)),
    )
    status = await service.queue.get_queue_status(doctor_id, tenant_id)
    estimate = await service.queue.estimate_wait_time(created.id, tenant_id)

    assert status.patients_waiting == 1
    assert estimate.appointment_id == created.id


@pytest.mark.asyncio
async def test_status_changes_evict_queue_caches(
    db_session, cache, fake_redis, clock, tenant_id, doctor_id, at
):
    service = AppointmentService(db_session, cache=cache, clock=clock)
    prefix = f"queue:{tenant_id}:{doctor_id}:"
    created = await service.create_appointment(
        tenant_id,
        AppointmentCreate(doctor_id=doctor_id, patient_id=uuid4(), appointment_time=at(11)),
    )

    async def warm():
        await service.queue.get_queue_status(doctor_id, tenant_id)
        await service.queue.estimate_wait_time(created.id, tenant_id)
        assert f"{prefix}status" in fake_redis.store
        assert f"{prefix}wait:{created.id}" in fake_redis.store

    await warm()
    await service.confirm_appointment(created.id, tenant_id)
    assert not [k for k in fake_redis.store if k.startswith(prefix)]

    await warm()
    await service.update_appointment_time(
        created.id, tenant_id, AppointmentReschedule(appointment_time=at(12))
    )
    assert not [k for k in fake_redis.store if k.startswith(prefix)]

    await warm()
    await service.cancel_appointment(created.id, tenant_id, cancelled_by=uuid4())
    assert not [k for k in fake_redis.store if k.startswith(prefix)]

    fake_redis.store[f"{prefix}status"] = "{}"
    await service.soft_delete_appointment(created.id, tenant_id)
    assert not [k for k in fake_redis.store if k.startswith(prefix)]
