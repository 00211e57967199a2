"""
Shipping Jobs

arq worker functions:
- submit_customs_job: deferred paperless customs submission for one order
- scan_shipment_health: daily scan of labeled orders for broken shipment data

Each job opens its own database session and engine. The engine reuses the
worker's arq pool so retries are scheduled on the same queue.
"""
import logging
from contextlib import asynccontextmanager

from arq import Retry

from wwe_shipping.core.config import settings
from wwe_shipping.core.database import get_db_session
from wwe_shipping.core.exceptions import OrderBusyError
from wwe_shipping.core.scheduler import ArqScheduler
from wwe_shipping.engine import create_shipping_engine
from wwe_shipping.services.order_store import SqlOrderStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def job_engine(ctx: dict):
    """Engine bound to a fresh session and the worker's Redis pool."""
    async with get_db_session() as db:
        engine = create_shipping_engine(
            store=SqlOrderStore(db),
            scheduler=ArqScheduler(pool=ctx.get("redis")),
        )
        try:
            yield engine
        finally:
            await engine.close()


async def submit_customs_job(ctx: dict, order_id: int) -> dict:
    """
    Run one customs submission attempt.

    Failures are handled inside the workflow (retry scheduled or marked
    FAILED), so the job itself only fails on infrastructure errors.
    An order locked by another process defers the job through arq Retry.
    """
    if not settings.DATABASE_URL:
        logger.error(f"Customs job for order {order_id} skipped: DATABASE_URL not configured")
        return {"status": "skipped", "reason": "no_database", "order_id": order_id}

    try:
        async with job_engine(ctx) as engine:
            submission = await engine.customs.submit(order_id, job_id=ctx.get("job_id"))
    except OrderBusyError as e:
        # Same job id again later; the workflow still recognizes it
        logger.info(f"Customs job for order {order_id} deferred: {e.message}")
        raise Retry(defer=settings.ORDER_LOCK_RETRY_SECONDS)

    logger.info(f"Customs job for order {order_id} finished: {submission.status.value}")
    return {
        "order_id": order_id,
        "status": submission.status.value,
        "attempts": submission.attempts,
        "document_id": submission.document_id,
        "last_error": submission.last_error,
    }


async def scan_shipment_health(ctx: dict) -> dict:
    """Daily health scan; problems are logged and returned in the job result."""
    if not settings.DATABASE_URL:
        logger.info("Shipment health scan skipped: DATABASE_URL not configured")
        return {"status": "skipped", "reason": "no_database"}

    async with job_engine(ctx) as engine:
        issues = await engine.health_check()

    for issue in issues:
        log = logger.error if issue.severity == "critical" else logger.warning
        log(f"Health check order {issue.order_id} [{issue.type}]: {issue.message}")

    return {
        "status": "completed",
        "problems": len(issues),
        "critical": sum(1 for issue in issues if issue.severity == "critical"),
        "issues": [issue.to_dict() for issue in issues],
    }
