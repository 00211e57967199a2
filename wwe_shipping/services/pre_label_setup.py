"""
Pre-label parcel registration

Runs before the first UPS label call for an order. Registration is best
effort: a failure is recorded on the order and labeling continues.

Skipped when:
- pre-registration is disabled
- the order was already registered
- the order's earlier registration was voided
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from wwe_shipping.core.exceptions import ShippingEngineError
from wwe_shipping.models.order import Order
from wwe_shipping.models.registration import (
    PRE_LABEL_ATTEMPTED_AT_KEY,
    PRE_LABEL_DATA_KEY,
    PRE_LABEL_DATA_KEYS,
    PRE_LABEL_ERROR_KEY,
    PRE_LABEL_SUBMITTED_AT_KEY,
    PRE_LABEL_SUBMITTED_KEY,
    PRE_LABEL_VOIDED_AT_KEY,
    PRE_LABEL_VOIDED_KEY,
    PRE_LABEL_VOIDED_TRACKING_KEY,
    PreLabelRegistration,
)
from wwe_shipping.services.iparcel_client import IParcelClient
from wwe_shipping.services.order_store import OrderStore

logger = logging.getLogger(__name__)


class PreLabelSetup:
    """Parcel content pre-registration hook for label generation."""

    def __init__(
        self,
        store: OrderStore,
        client: Optional[IParcelClient] = None,
        enabled: bool = True,
        default_origin: str = "FR",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.client = client
        self.enabled = enabled and client is not None
        self.default_origin = default_origin
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def register(self, order: Order) -> bool:
        """
        Register parcel contents for an order.

        Returns:
            True when the order is registered (now or earlier) or was voided,
            False when disabled or the submission failed
        """
        if not self.enabled:
            return False

        registration = PreLabelRegistration.from_attributes(await self.store.get_attributes(order.id))
        if registration.submitted:
            logger.info(f"Pre-label: order {order.id} already registered - skipping")
            return True
        if registration.voided:
            logger.info(
                f"Pre-label: order {order.id} was previously voided "
                f"(tracking: {registration.voided_tracking}) - skipping"
            )
            return True

        now = self.clock().isoformat()
        try:
            response = await self.client.submit_parcel(order, self.default_origin)
        except ShippingEngineError as e:
            logger.error(f"Pre-label: SubmitParcel failed for order {order.id} - {e.message}")
            await self.store.set_attributes(order.id, {
                PRE_LABEL_ERROR_KEY: e.message,
                PRE_LABEL_ATTEMPTED_AT_KEY: now,
            })
            await self.store.save(order.id)
            return False

        values: Dict[str, Any] = {
            PRE_LABEL_SUBMITTED_KEY: True,
            PRE_LABEL_SUBMITTED_AT_KEY: now,
            PRE_LABEL_ERROR_KEY: None,
        }
        if "data" in response:
            values[PRE_LABEL_DATA_KEY] = response["data"]
        await self.store.set_attributes(order.id, values)
        await self.store.save(order.id)

        logger.info(f"Pre-label: SubmitParcel succeeded for order {order.id}")
        return True

    async def mark_voided(self, order_id: int, tracking_number: Optional[str]) -> bool:
        """
        Clear registration data and block re-registration for a voided shipment.

        Returns:
            False when the order was never registered (nothing to clean)
        """
        registration = PreLabelRegistration.from_attributes(await self.store.get_attributes(order_id))
        if not (registration.submitted or registration.data):
            return False

        await self.store.delete_attributes(order_id, PRE_LABEL_DATA_KEYS)
        await self.store.set_attributes(order_id, {
            PRE_LABEL_VOIDED_KEY: True,
            PRE_LABEL_VOIDED_AT_KEY: self.clock().isoformat(),
            PRE_LABEL_VOIDED_TRACKING_KEY: tracking_number or "",
        })
        await self.store.add_note(
            order_id,
            f"i-Parcel pre-label data cleaned up after voiding tracking {tracking_number}. "
            f"The entry may still appear in the carrier's missing items report.",
        )
        logger.info(f"Pre-label: order {order_id} registration cleared after void")
        return True

    async def get_status(self, order_id: int) -> Dict[str, Any]:
        registration = PreLabelRegistration.from_attributes(await self.store.get_attributes(order_id))
        status = {"status": registration.status}
        if registration.submitted:
            status["message"] = "Pre-label SubmitParcel completed successfully"
            status["data"] = registration.data
            status["completed_at"] = registration.submitted_at.isoformat() if registration.submitted_at else None
        elif registration.voided:
            status["message"] = f"Registration voided with tracking {registration.voided_tracking}"
        elif registration.error:
            status["message"] = registration.error
            status["attempted_at"] = registration.attempted_at.isoformat() if registration.attempted_at else None
        else:
            status["message"] = "Pre-label SubmitParcel not yet processed"
        return status
