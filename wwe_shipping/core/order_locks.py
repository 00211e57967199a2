"""
Per-order mutual exclusion

Label generation, void and customs submission for the same order must never
interleave. Each order id maps to one asyncio.Lock; different orders run
concurrently.

OrderLocks only serializes callers inside one process. RedisOrderLocks adds
a Redis lock per order on top, so the arq worker (customs submission) and
the process voiding an order exclude each other too. Redis locks are not
reentrant: a holder must not call another locked operation for the same
order.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import redis.asyncio as redis
from redis.exceptions import LockError

from wwe_shipping.core.config import settings
from wwe_shipping.core.exceptions import OrderBusyError
from wwe_shipping.core.redis_client import get_redis

logger = logging.getLogger(__name__)

REDIS_LOCK_PREFIX = "wwe:order-lock:"


class OrderLocks:
    """Registry of per-order locks."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._waiters: Dict[int, int] = {}

    def is_locked(self, order_id: int) -> bool:
        lock = self._locks.get(order_id)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, order_id: int, operation: str = ""):
        """
        Hold the lock for an order for the duration of the block.

        Usage:
            async with locks.hold(order.id, "void"):
                ...
        """
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._waiters[order_id] = self._waiters.get(order_id, 0) + 1
        if lock.locked():
            logger.debug(f"Order {order_id}: {operation or 'operation'} waiting for lock")
        try:
            async with lock:
                yield
        finally:
            self._waiters[order_id] -= 1
            if self._waiters[order_id] == 0:
                # No one else holds or waits; drop the entry
                del self._waiters[order_id]
                self._locks.pop(order_id, None)


class RedisOrderLocks(OrderLocks):
    """
    Per-order locks shared by every process using the same Redis.

    The Redis lock expires after `timeout` seconds so a crashed holder
    cannot block an order forever. Without a Redis connection it behaves
    like OrderLocks.
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        timeout: Optional[int] = None,
        wait_timeout: Optional[float] = None,
    ):
        super().__init__()
        self._client = client
        self.timeout = timeout or settings.ORDER_LOCK_TIMEOUT_SECONDS
        self.wait_timeout = wait_timeout if wait_timeout is not None else settings.ORDER_LOCK_WAIT_SECONDS

    async def _get_client(self) -> Optional[redis.Redis]:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    @asynccontextmanager
    async def hold(self, order_id: int, operation: str = ""):
        """
        Hold the process lock, then the Redis lock, for an order.

        Raises:
            OrderBusyError: the Redis lock was not free within wait_timeout
        """
        async with super().hold(order_id, operation):
            client = await self._get_client()
            if client is None:
                yield
                return

            lock = client.lock(
                f"{REDIS_LOCK_PREFIX}{order_id}",
                timeout=self.timeout,
                blocking_timeout=self.wait_timeout,
            )
            if not await lock.acquire():
                raise OrderBusyError(
                    f"Order {order_id} is locked by another process; "
                    f"{operation or 'operation'} gave up after {self.wait_timeout:g}s",
                    order_id=order_id,
                )
            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError as e:
                    logger.warning(f"Order {order_id}: lock expired before {operation or 'operation'} finished: {e}")


# Process-wide registry shared by all engine components
order_locks = OrderLocks()
