"""
Customs Workflow

Paperless commercial invoice submission for labeled international orders.

Flow:
1. WaybillCreated -> schedule submission after the cool-down delay
   (UPS needs time to propagate a new shipment before documents link)
2. Build the commercial invoice (plain text)
3. Upload it, obtaining a DocumentID
4. Link the DocumentID to the primary tracking number

Failures are retried with increasing delays up to the attempt limit, then
the order is marked FAILED with the last error kept for operators.
SUBMITTED is final; triggering again is a no-op. A void marks the
submission VOIDED and cancels any scheduled job.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from wwe_shipping.core.config import settings
from wwe_shipping.core.events import WaybillCreated
from wwe_shipping.core.exceptions import NoShipmentError, ShippingEngineError
from wwe_shipping.core.order_locks import OrderLocks, order_locks
from wwe_shipping.core.scheduler import JobScheduler
from wwe_shipping.models.customs import PAPERLESS_METHOD, CustomsStatus, CustomsSubmission
from wwe_shipping.models.shipment import LABELED_AT_KEY, stored_tracking_numbers
from wwe_shipping.services.commercial_invoice import build_commercial_invoice
from wwe_shipping.services.order_store import OrderStore
from wwe_shipping.services.ups_client import UPSClient
from wwe_shipping.services.ups_payloads import ShipperProfile

logger = logging.getLogger(__name__)

CUSTOMS_JOB_NAME = "submit_customs_job"


@dataclass
class CustomsConfig:
    auto_submit: bool = True
    delay_seconds: int = 300
    max_retries: int = 3
    retry_delays: List[int] = field(default_factory=lambda: [300, 900, 3600])
    default_country_of_origin: str = "FR"

    @classmethod
    def from_settings(cls) -> "CustomsConfig":
        return cls(
            auto_submit=settings.CUSTOMS_AUTO_SUBMIT,
            delay_seconds=settings.CUSTOMS_DELAY_SECONDS,
            max_retries=settings.CUSTOMS_MAX_RETRIES,
            retry_delays=list(settings.CUSTOMS_RETRY_DELAYS),
            default_country_of_origin=settings.CUSTOMS_DEFAULT_COUNTRY_OF_ORIGIN,
        )

    def retry_delay(self, attempt: int) -> int:
        """Delay before the retry that follows failed attempt number `attempt` (1-based)."""
        if not self.retry_delays:
            return self.delay_seconds
        return self.retry_delays[min(attempt, len(self.retry_delays)) - 1]


class CustomsWorkflow:
    """Scheduled paperless customs submission."""

    def __init__(
        self,
        carrier: UPSClient,
        store: OrderStore,
        scheduler: JobScheduler,
        shipper: Optional[ShipperProfile] = None,
        config: Optional[CustomsConfig] = None,
        locks: Optional[OrderLocks] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.carrier = carrier
        self.store = store
        self.scheduler = scheduler
        self.shipper = shipper or ShipperProfile.from_settings()
        self.config = config or CustomsConfig.from_settings()
        self.locks = locks or order_locks
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ==================== Triggers ====================

    async def on_waybill_created(self, event: WaybillCreated) -> Optional[CustomsSubmission]:
        """Event subscriber: schedule submission for a freshly labeled order."""
        if not self.config.auto_submit:
            logger.info(f"Auto customs disabled, order {event.order_id} left for manual submission")
            return None
        return await self.trigger(event.order_id, event.tracking_numbers, event.created_at)

    async def trigger(
        self,
        order_id: int,
        tracking_numbers: List[str],
        labeled_at: Optional[datetime] = None,
    ) -> Optional[CustomsSubmission]:
        """
        Schedule submission for the order's primary tracking number.

        The stored shipment wins over the event's tracking numbers: an order
        voided (or relabeled) since the event was published is not scheduled
        from stale data.

        Returns:
            The stored CustomsSubmission, or None when the order is unknown
        """
        async with self.locks.hold(order_id, "customs trigger"):
            order = await self.store.get_order(order_id)
            if order is None:
                logger.error(f"Customs trigger: order {order_id} not found")
                return None

            attributes = await self.store.get_attributes(order_id)
            current = CustomsSubmission.from_attributes(attributes)
            stored = stored_tracking_numbers(attributes)
            if not stored:
                logger.info(f"Customs trigger: order {order_id} has no stored shipment (voided?) - skipping")
                return current

            primary = stored[0]
            if tracking_numbers and tracking_numbers[0] != primary:
                logger.warning(
                    f"Customs trigger: order {order_id} event tracking {tracking_numbers[0]} "
                    f"differs from stored {primary} - using stored"
                )

            if current and current.status == CustomsStatus.SUBMITTED and current.tracking_number == primary:
                logger.info(f"Customs for order {order_id} already submitted - skipping")
                return current
            if current and current.status == CustomsStatus.FAILED and current.tracking_number == primary:
                logger.info(f"Customs for order {order_id} already failed - manual submission required")
                return current

            if order.destination_country == self.shipper.country.upper():
                submission = CustomsSubmission(status=CustomsStatus.NOT_REQUIRED, tracking_number=primary)
                await self._store(order_id, submission)
                logger.info(f"Customs not required for domestic order {order_id}")
                return submission

            if current and current.job_id and not current.status.is_terminal:
                await self.scheduler.cancel(current.job_id)

            submission = CustomsSubmission(status=CustomsStatus.PENDING, tracking_number=primary)
            run_at = max(self._earliest_submission(labeled_at), self.clock())
            await self._schedule(order_id, submission, run_at)
            await self._store(order_id, submission)

            logger.info(
                f"Customs triggered for order {order_id} - scheduled at {run_at.isoformat()} "
                f"({self.config.delay_seconds}s after label)"
            )
            return submission

    # ==================== Submission ====================

    async def submit(
        self,
        order_id: int,
        manual: bool = False,
        job_id: Optional[str] = None,
    ) -> CustomsSubmission:
        """
        Run one submission attempt.

        Called by the scheduled job, or by an operator with manual=True.
        A manual call cancels the pending scheduled run, and restarts a
        FAILED submission with a fresh attempt budget.

        Args:
            order_id: Order to declare
            manual: Operator-initiated run
            job_id: Id of the scheduled job making the call; a job that is
                no longer the submission's current job does nothing

        Raises:
            NoShipmentError: manual call on an order without labels
        """
        async with self.locks.hold(order_id, "customs submit"):
            attributes = await self.store.get_attributes(order_id)
            submission = CustomsSubmission.from_attributes(attributes)
            tracking_numbers = stored_tracking_numbers(attributes)

            if submission is None:
                if not tracking_numbers:
                    raise NoShipmentError(f"Order {order_id} has no UPS shipment to declare")
                submission = CustomsSubmission(status=CustomsStatus.PENDING)
            elif submission.status == CustomsStatus.FAILED and manual:
                submission = CustomsSubmission(status=CustomsStatus.PENDING)
            elif submission.status == CustomsStatus.VOIDED and tracking_numbers:
                # Relabeled after a void: the new shipment needs its own invoice
                submission = CustomsSubmission(status=CustomsStatus.PENDING)
            elif submission.status.is_terminal:
                logger.info(f"Customs for order {order_id} is {submission.status.value} - nothing to do")
                return submission

            if manual and submission.job_id:
                # The operator run replaces the scheduled one
                await self.scheduler.cancel(submission.job_id)
                submission.job_id = None
                submission.next_retry_at = None
            elif job_id and submission.job_id and job_id != submission.job_id:
                logger.info(
                    f"Customs job {job_id} for order {order_id} superseded by {submission.job_id} - skipping"
                )
                return submission

            # Step 1: Primary tracking number
            if not tracking_numbers:
                return await self._mark_failed(order_id, submission, "No tracking number found on order")
            submission.tracking_number = tracking_numbers[0]

            labeled_at = _parse(attributes.get(LABELED_AT_KEY))
            earliest = self._earliest_submission(labeled_at)
            now = self.clock()
            if now < earliest:
                # Still inside the cool-down window; run later instead
                if submission.job_id:
                    await self.scheduler.cancel(submission.job_id)
                await self._schedule(order_id, submission, earliest)
                await self._store(order_id, submission)
                logger.info(f"Customs for order {order_id} rescheduled to {earliest.isoformat()} (cool-down)")
                return submission

            order = await self.store.get_order(order_id)
            if order is None:
                return await self._mark_failed(order_id, submission, f"Order {order_id} not found")

            submission.status = CustomsStatus.PROCESSING
            submission.attempts += 1
            submission.job_id = None
            submission.next_retry_at = None
            await self._store(order_id, submission)

            logger.info(
                f"Customs attempt {submission.attempts}/{self.config.max_retries} for order {order_id}, "
                f"tracking {submission.tracking_number}"
            )

            try:
                # Step 2: Invoice
                invoice = build_commercial_invoice(
                    order,
                    self.shipper,
                    issued_at=now,
                    default_origin=self.config.default_country_of_origin,
                )
                # Step 3: Upload
                document_id = await self.carrier.upload_customs_document(
                    invoice.render_text(),
                    file_name=f"commercial_invoice_{order_id}_{int(now.timestamp())}.txt",
                )
                # Step 4: Link
                await self.carrier.link_document_to_tracking(
                    document_id,
                    submission.tracking_number,
                    shipment_time=labeled_at or now,
                )
            except ShippingEngineError as e:
                return await self._handle_failure(order_id, submission, e)

            submission.status = CustomsStatus.SUBMITTED
            submission.document_id = document_id
            submission.submitted_at = self.clock()
            submission.last_error = None
            await self._store(order_id, submission)
            await self.store.add_note(
                order_id,
                f"Customs documents submitted electronically via UPS Paperless Documents API v2 "
                f"(document {document_id}, tracking {submission.tracking_number})",
            )
            await self.store.save(order_id)
            logger.info(f"Customs submitted for order {order_id} - DocumentID {document_id}")
            return submission

    async def _handle_failure(
        self,
        order_id: int,
        submission: CustomsSubmission,
        error: ShippingEngineError,
    ) -> CustomsSubmission:
        message = error.message
        logger.warning(f"Customs attempt {submission.attempts} failed for order {order_id}: {message}")

        if not error.retryable:
            return await self._mark_failed(order_id, submission, message)
        if submission.attempts >= self.config.max_retries:
            return await self._mark_failed(order_id, submission, f"Max retries exceeded. Last error: {message}")

        delay = self.config.retry_delay(submission.attempts)
        submission.status = CustomsStatus.PENDING
        submission.last_error = message
        await self._schedule(order_id, submission, self.clock() + timedelta(seconds=delay))
        await self._store(order_id, submission)

        logger.info(f"Customs retry #{submission.attempts + 1} for order {order_id} in {delay} seconds")
        return submission

    async def _mark_failed(self, order_id: int, submission: CustomsSubmission, message: str) -> CustomsSubmission:
        submission.status = CustomsStatus.FAILED
        submission.last_error = message
        submission.next_retry_at = None
        submission.job_id = None
        await self._store(order_id, submission)
        await self.store.add_note(order_id, f"Auto-customs failed: {message}")
        await self.store.save(order_id)
        logger.error(f"Customs failed for order {order_id}: {message}")
        return submission

    # ==================== Void ====================

    async def mark_voided(self, order_id: int) -> Optional[CustomsSubmission]:
        """
        Stop customs for a voided shipment.

        The caller holds the order lock (see VoidReconciler).
        """
        submission = CustomsSubmission.from_attributes(await self.store.get_attributes(order_id))
        if submission is None:
            return None

        if submission.job_id:
            await self.scheduler.cancel(submission.job_id)

        submission.status = CustomsStatus.VOIDED
        submission.job_id = None
        submission.next_retry_at = None
        submission.voided_at = self.clock()
        await self._store(order_id, submission)
        logger.info(f"Customs for order {order_id} marked voided")
        return submission

    # ==================== Status ====================

    async def get_status(self, order_id: int) -> Dict[str, Any]:
        """Customs status report for operators."""
        submission = CustomsSubmission.from_attributes(await self.store.get_attributes(order_id))
        if submission is None:
            return {"status": None, "attempts": 0, "max_retries": self.config.max_retries}

        return {
            "status": submission.status.value,
            "attempts": submission.attempts,
            "max_retries": self.config.max_retries,
            "last_error": submission.last_error,
            "next_retry_at": _iso(submission.next_retry_at),
            "document_id": submission.document_id,
            "tracking_number": submission.tracking_number,
            "submitted_at": _iso(submission.submitted_at),
            "voided_at": _iso(submission.voided_at),
            "method": PAPERLESS_METHOD if submission.document_id else None,
        }

    # ==================== Helpers ====================

    def _earliest_submission(self, labeled_at: Optional[datetime]) -> datetime:
        return (labeled_at or self.clock()) + timedelta(seconds=self.config.delay_seconds)

    async def _schedule(self, order_id: int, submission: CustomsSubmission, run_at: datetime) -> None:
        job_id = f"customs:{order_id}:{uuid.uuid4().hex[:12]}"
        await self.scheduler.schedule_at(run_at, CUSTOMS_JOB_NAME, order_id, job_id)
        submission.job_id = job_id
        submission.next_retry_at = run_at

    async def _store(self, order_id: int, submission: CustomsSubmission) -> None:
        await self.store.set_attributes(order_id, submission.to_attributes())
        await self.store.save(order_id)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
