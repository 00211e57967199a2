"""
Void Reconciler

Cancels every UPS shipment on an order and cleans up the order's shipment
data.

Cleanup policy:
- Cleanup runs as soon as one identifier voids, even when others fail.
  Voiding any package invalidates the label set at UPS, so keeping the
  remaining tracking and label data would leave the order pointing at a
  dead shipment.
- "Already voided" counts as success, so repeated voids are harmless.
- Cleanup also clears parcel pre-registration data and stops pending
  customs submission for the order.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Union

from wwe_shipping.core.events import EventBus, LabelsVoided
from wwe_shipping.core.exceptions import NoShipmentError, ProviderError
from wwe_shipping.core.order_locks import OrderLocks, order_locks
from wwe_shipping.models.shipment import (
    ShipmentRecord,
    VoidBatchResult,
    VoidResult,
    VoidStatus,
    stored_tracking_numbers,
    stored_void_identifiers,
)
from wwe_shipping.services.customs_workflow import CustomsWorkflow
from wwe_shipping.services.order_store import OrderStore
from wwe_shipping.services.pre_label_setup import PreLabelSetup
from wwe_shipping.services.ups_client import UPSClient

logger = logging.getLogger(__name__)


def normalize_identifiers(identifiers: Union[str, Iterable[str], None]) -> List[str]:
    """Accept a comma-separated string or an iterable; drop blanks and duplicates."""
    if identifiers is None:
        return []
    if isinstance(identifiers, str):
        identifiers = identifiers.split(",")
    seen = []
    for identifier in identifiers:
        identifier = str(identifier).strip()
        if identifier and identifier not in seen:
            seen.append(identifier)
    return seen


class VoidReconciler:
    """Batch void with at-least-one-success cleanup."""

    def __init__(
        self,
        carrier: UPSClient,
        store: OrderStore,
        events: Optional[EventBus] = None,
        locks: Optional[OrderLocks] = None,
        pre_label: Optional[PreLabelSetup] = None,
        customs: Optional[CustomsWorkflow] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.carrier = carrier
        self.store = store
        self.events = events or EventBus()
        self.locks = locks or order_locks
        self.pre_label = pre_label
        self.customs = customs
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def void_all(
        self,
        order_id: int,
        identifiers: Union[str, Iterable[str], None] = None,
    ) -> VoidBatchResult:
        """
        Void shipments for an order.

        Args:
            order_id: Order to void
            identifiers: Shipment ids or tracking numbers; defaults to the
                stored shipment ids, falling back to stored tracking numbers

        Returns:
            VoidBatchResult; cleaned is True whenever success_count > 0

        Raises:
            NoShipmentError: nothing to void
        """
        async with self.locks.hold(order_id, "void"):
            attributes = await self.store.get_attributes(order_id)
            targets = normalize_identifiers(identifiers)
            if not targets:
                targets = stored_void_identifiers(attributes)
            if not targets:
                raise NoShipmentError(
                    f"Could not find any shipment id or tracking number to void on order {order_id}"
                )

            logger.info(f"Voiding {len(targets)} shipment(s) for order {order_id}: {', '.join(targets)}")

            results: List[VoidResult] = []
            errors: List[str] = []
            for identifier in targets:
                result = await self._void_one(order_id, identifier)
                results.append(result)
                if not result.is_success:
                    errors.append(f"({identifier}) {result.message}")

            success_count = sum(1 for result in results if result.is_success)
            batch = VoidBatchResult(
                order_id=order_id,
                success_count=success_count,
                errors=errors,
                results=results,
            )

            if success_count > 0:
                tracking_numbers = stored_tracking_numbers(attributes)
                await self._clean_order(order_id, attributes, tracking_numbers)
                batch.cleaned = True

                if not errors:
                    await self.store.add_note(order_id, "All UPS shipments successfully voided.")
                    batch.message = f"{success_count} UPS shipment(s) successfully voided!"
                else:
                    await self.store.add_note(
                        order_id,
                        f"UPS shipments partially voided ({success_count} success, "
                        f"{len(errors)} errors). Data cleaned for safety.",
                    )
                    batch.message = (
                        f"Partial void success ({success_count}/{success_count + len(errors)}). "
                        f"Errors: {'; '.join(errors)}. Order data cleaned for safety."
                    )
            else:
                batch.message = (
                    f"Failed to void all shipments. Success: {success_count}, "
                    f"Failures: {len(errors)}. Errors: {'; '.join(errors)}"
                )
                await self.store.add_note(order_id, f"UPS void failed: {batch.message}")

            await self.store.save(order_id)

        if batch.cleaned:
            logger.info(f"Order {order_id}: {batch.message}")
            await self.events.publish(LabelsVoided(
                order_id=order_id,
                voided_identifiers=[r.identifier for r in results if r.is_success],
                tracking_numbers=tracking_numbers,
                partial=batch.partial,
                voided_at=self.clock(),
            ))
        else:
            logger.error(f"Order {order_id}: {batch.message}")

        return batch

    async def _void_one(self, order_id: int, identifier: str) -> VoidResult:
        try:
            return await self.carrier.void_shipment(identifier)
        except ProviderError as e:
            logger.error(f"Order {order_id}: void of {identifier} failed: {e.message}")
            return VoidResult(
                identifier=identifier,
                status=VoidStatus.FAILED,
                message=e.message,
                code=e.code,
            )

    async def _clean_order(self, order_id: int, attributes: dict, tracking_numbers: List[str]) -> None:
        """Remove the shipment record and everything that depends on it."""
        await self.store.delete_attributes(order_id, ShipmentRecord.attribute_keys(attributes))

        tracking = ", ".join(tracking_numbers)
        if self.pre_label is not None:
            await self.pre_label.mark_voided(order_id, tracking)

        if self.customs is not None:
            await self.customs.mark_voided(order_id)

        logger.info(f"Order {order_id}: shipment data removed after void (tracking {tracking or '-'})")
