"""
Tests for the event bus, schedulers and per-order locks.
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from conftest import FIXED_NOW, SharedLockRedis
from wwe_shipping.core.events import EventBus, LabelsVoided, WaybillCreated
from wwe_shipping.core.exceptions import OrderBusyError
from wwe_shipping.core.order_locks import REDIS_LOCK_PREFIX, OrderLocks, RedisOrderLocks
from wwe_shipping.core.scheduler import ArqScheduler, InMemoryScheduler


class TestEventBus:
    """Test publish/subscribe."""

    @pytest.mark.asyncio
    async def test_delivers_by_type(self):
        bus = EventBus()
        waybill_handler = AsyncMock()
        void_handler = AsyncMock()
        bus.subscribe(WaybillCreated, waybill_handler)
        bus.subscribe(LabelsVoided, void_handler)
        event = WaybillCreated(order_id=1, tracking_numbers=["1ZA"])

        delivered = await bus.publish(event)

        assert delivered == 1
        waybill_handler.assert_awaited_once_with(event)
        void_handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_subscriber_skipped(self):
        bus = EventBus()
        after = AsyncMock()
        bus.subscribe(WaybillCreated, AsyncMock(side_effect=RuntimeError("boom")))
        bus.subscribe(WaybillCreated, after)

        delivered = await bus.publish(WaybillCreated(order_id=1, tracking_numbers=["1ZA"]))

        assert delivered == 1
        after.assert_awaited_once()

    def test_unsubscribe(self):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(WaybillCreated, handler)
        bus.unsubscribe(WaybillCreated, handler)

        assert bus.subscriber_count(WaybillCreated) == 0


class TestInMemoryScheduler:
    """Test the in-process scheduler."""

    @pytest.mark.asyncio
    async def test_run_due_in_time_order(self):
        scheduler = InMemoryScheduler()
        ran = []

        async def handler(order_id, job_id=None):
            ran.append((order_id, job_id))

        scheduler.register("job", handler)
        await scheduler.schedule_at(FIXED_NOW + timedelta(seconds=20), "job", 2, "j2")
        await scheduler.schedule_at(FIXED_NOW + timedelta(seconds=10), "job", 1, "j1")
        await scheduler.schedule_at(FIXED_NOW + timedelta(hours=1), "job", 3, "j3")

        executed = await scheduler.run_due(FIXED_NOW + timedelta(seconds=30))

        assert executed == 2
        assert ran == [(1, "j1"), (2, "j2")]
        assert list(scheduler.jobs) == ["j3"]

    @pytest.mark.asyncio
    async def test_cancel(self):
        scheduler = InMemoryScheduler()
        await scheduler.schedule_at(FIXED_NOW, "job", 1, "j1")

        assert await scheduler.cancel("j1") is True
        assert await scheduler.cancel("j1") is False
        assert scheduler.cancelled == ["j1"]


class TestArqScheduler:
    """Test arq deferred jobs through a mocked pool."""

    @pytest.mark.asyncio
    async def test_schedule_defers_job(self):
        pool = AsyncMock()
        scheduler = ArqScheduler(pool=pool)

        job_id = await scheduler.schedule_at(FIXED_NOW, "submit_customs_job", 1001, "customs:1001:abc")

        assert job_id == "customs:1001:abc"
        pool.enqueue_job.assert_awaited_once_with(
            "submit_customs_job", 1001, _job_id="customs:1001:abc", _defer_until=FIXED_NOW,
        )

    @pytest.mark.asyncio
    async def test_cancel_removes_from_queue(self):
        pool = AsyncMock()
        pool.zrem.return_value = 1
        scheduler = ArqScheduler(pool=pool)

        assert await scheduler.cancel("customs:1001:abc") is True

        pool.zrem.assert_awaited_once_with("arq:queue", "customs:1001:abc")
        pool.delete.assert_awaited_once_with("arq:job:customs:1001:abc")


class TestOrderLocks:
    """Test per-order serialization."""

    @pytest.mark.asyncio
    async def test_same_order_serialized(self):
        locks = OrderLocks()
        events = []

        async def worker(name):
            async with locks.hold(1, name):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert events == ["a-start", "a-end", "b-start", "b-end"]
        assert locks.is_locked(1) is False

    @pytest.mark.asyncio
    async def test_different_orders_concurrent(self):
        locks = OrderLocks()
        events = []

        async def worker(order_id):
            async with locks.hold(order_id):
                events.append(f"{order_id}-start")
                await asyncio.sleep(0.01)
                events.append(f"{order_id}-end")

        await asyncio.gather(worker(1), worker(2))

        assert events[:2] == ["1-start", "2-start"]


class TestRedisOrderLocks:
    """Test per-order locks shared across processes."""

    @pytest.mark.asyncio
    async def test_lock_held_for_block(self):
        client = SharedLockRedis()
        locks = RedisOrderLocks(client=client, wait_timeout=1)

        async with locks.hold(1001, "void"):
            assert f"{REDIS_LOCK_PREFIX}1001" in client.held

        assert client.held == set()

    @pytest.mark.asyncio
    async def test_other_process_excluded(self):
        client = SharedLockRedis()
        worker = RedisOrderLocks(client=client, wait_timeout=1)
        caller = RedisOrderLocks(client=client, wait_timeout=1)
        events = []

        async def run(locks, name):
            async with locks.hold(1001, name):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(run(worker, "submit"), run(caller, "void"))

        assert events == ["submit-start", "submit-end", "void-start", "void-end"]

    @pytest.mark.asyncio
    async def test_busy_order_raises(self):
        client = SharedLockRedis()
        client.held.add(f"{REDIS_LOCK_PREFIX}1001")
        locks = RedisOrderLocks(client=client, wait_timeout=0.01)

        with pytest.raises(OrderBusyError) as exc_info:
            async with locks.hold(1001, "customs submit"):
                pass

        assert exc_info.value.details["order_id"] == 1001
        assert locks.is_locked(1001) is False

    @pytest.mark.asyncio
    async def test_without_redis_uses_process_lock(self):
        locks = RedisOrderLocks(wait_timeout=1)

        async with locks.hold(1001):
            assert locks.is_locked(1001) is True
