"""
Job Queue Configuration

ARQ worker settings for deferred customs submission and the daily health
scan. Run with: arq wwe_shipping.core.job_queue.WorkerSettings
"""
from urllib.parse import urlparse

from arq import cron
from arq.connections import RedisSettings

from wwe_shipping.core.config import settings
from wwe_shipping.core.database import dispose_engine, init_models
from wwe_shipping.core.redis_client import close_redis
from wwe_shipping.jobs.shipping_jobs import (
    submit_customs_job,
    scan_shipment_health,
)


def parse_redis_url(url: str) -> RedisSettings:
    """Parse Redis URL into ARQ RedisSettings."""
    if not url:
        # Default to localhost
        return RedisSettings()

    # redis://host:port/db or redis://:password@host:port/db
    parsed = urlparse(url)

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(parsed.path.lstrip("/") or 0) if parsed.path else 0,
    )


async def startup(ctx: dict) -> None:
    """Create the order store tables before the first job runs."""
    if settings.DATABASE_URL:
        await init_models()


async def shutdown(ctx: dict) -> None:
    await dispose_engine()
    await close_redis()


class WorkerSettings:
    """
    ARQ Worker configuration.

    Schedules:
    - Customs submission: deferred per order (see ArqScheduler)
    - Shipment health scan: daily at 8 AM UTC
    """

    functions = [
        submit_customs_job,
        scan_shipment_health,
    ]

    cron_jobs = [
        cron(
            scan_shipment_health,
            hour=8,
            minute=0,
        ),
    ]

    on_startup = startup
    on_shutdown = shutdown

    # Redis connection
    redis_settings = parse_redis_url(settings.ARQ_REDIS_URL or settings.REDIS_URL)

    # Worker settings
    max_jobs = 10
    job_timeout = 300  # 5 minutes
    keep_result = 3600  # 1 hour

    # Failed customs attempts are rescheduled by the workflow itself; arq
    # only retries jobs deferred by a busy order lock
    max_tries = 5
