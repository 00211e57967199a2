"""
Delayed job scheduling

The customs workflow never sleeps; it asks a scheduler to run a named job
for an order at a given time and to cancel it again when the order is
voided.

Implementations:
- InMemoryScheduler: keeps jobs in a dict and runs them from run_due(now);
  used in tests and single-process development
- ArqScheduler: arq deferred jobs in Redis, executed by the worker
  (see core/job_queue.py)
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

# Called as handler(order_id, job_id=...)
JobHandler = Callable[..., Awaitable[object]]


@dataclass
class ScheduledJob:
    job_id: str
    job_name: str
    order_id: int
    run_at: datetime


class JobScheduler(Protocol):
    """Protocol for delayed job scheduling."""

    async def schedule_at(self, run_at: datetime, job_name: str, order_id: int, job_id: str) -> str:
        """Schedule job_name(order_id) at run_at. Returns the job id."""
        ...

    async def cancel(self, job_id: str) -> bool:
        """Cancel a job that has not started. Returns True when something was removed."""
        ...


class InMemoryScheduler:
    """Dictionary-backed scheduler for development/testing."""

    def __init__(self):
        self.jobs: Dict[str, ScheduledJob] = {}
        self.cancelled: List[str] = []
        self._handlers: Dict[str, JobHandler] = {}

    def register(self, job_name: str, handler: JobHandler) -> None:
        self._handlers[job_name] = handler

    def pending_for(self, order_id: int) -> List[ScheduledJob]:
        return sorted(
            (job for job in self.jobs.values() if job.order_id == order_id),
            key=lambda job: job.run_at,
        )

    async def schedule_at(self, run_at: datetime, job_name: str, order_id: int, job_id: str) -> str:
        self.jobs[job_id] = ScheduledJob(job_id=job_id, job_name=job_name, order_id=order_id, run_at=run_at)
        logger.debug(f"Scheduled {job_name} for order {order_id} at {run_at.isoformat()} ({job_id})")
        return job_id

    async def cancel(self, job_id: str) -> bool:
        job = self.jobs.pop(job_id, None)
        if job:
            self.cancelled.append(job_id)
            logger.debug(f"Cancelled {job.job_name} for order {job.order_id} ({job_id})")
        return job is not None

    async def run_due(self, now: datetime) -> int:
        """
        Run every job whose run_at is at or before now, earliest first.

        Jobs scheduled by a running job are only run by a later call.

        Returns:
            Number of jobs executed
        """
        due = sorted(
            (job for job in self.jobs.values() if job.run_at <= now),
            key=lambda job: job.run_at,
        )
        for job in due:
            self.jobs.pop(job.job_id, None)
            handler = self._handlers.get(job.job_name)
            if handler is None:
                logger.warning(f"No handler registered for {job.job_name}, dropping {job.job_id}")
                continue
            await handler(job.order_id, job_id=job.job_id)
        return len(due)


class ArqScheduler:
    """
    Scheduler backed by arq deferred jobs.

    Job ids must be unique per attempt; arq refuses to enqueue a job id it
    still has a record of.
    """

    def __init__(self, pool=None, redis_url: Optional[str] = None):
        self._pool = pool
        self._redis_url = redis_url

    async def _get_pool(self):
        if self._pool is None:
            from arq import create_pool
            from wwe_shipping.core.config import settings
            from wwe_shipping.core.job_queue import parse_redis_url

            self._pool = await create_pool(parse_redis_url(self._redis_url or settings.ARQ_REDIS_URL))
        return self._pool

    async def schedule_at(self, run_at: datetime, job_name: str, order_id: int, job_id: str) -> str:
        pool = await self._get_pool()
        job = await pool.enqueue_job(
            job_name,
            order_id,
            _job_id=job_id,
            _defer_until=run_at,
        )
        if job is None:
            logger.warning(f"arq already knows job {job_id}; not enqueued again")
        else:
            logger.info(f"Enqueued {job_name} for order {order_id} at {run_at.isoformat()} ({job_id})")
        return job_id

    async def cancel(self, job_id: str) -> bool:
        """Remove a deferred job from the queue before a worker picks it up."""
        from arq.constants import default_queue_name, job_key_prefix

        pool = await self._get_pool()
        removed = await pool.zrem(default_queue_name, job_id)
        await pool.delete(job_key_prefix + job_id)
        if removed:
            logger.info(f"Removed arq job {job_id} from queue")
        return bool(removed)

    async def close(self):
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None
