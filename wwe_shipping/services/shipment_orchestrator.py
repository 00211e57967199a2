"""
Shipment Orchestrator

Drives label generation for one order.

Label Flow:
1. Check destination address (before any carrier call)
2. Plan packages
3. Reject orders that already carry a shipment record
4. Pre-register parcel contents (best effort)
5. One ShipmentRequest per package, in package order
6. Persist the ShipmentRecord and add an order note
7. Publish WaybillCreated (customs workflow listens)

States: UNLABELED -> LABELING -> LABELED, or LABELING -> LABEL_FAILED.
A failure on any package fails the whole order and nothing is persisted.
Packages labeled before the failure stay live at UPS unless compensating
voids are switched on; their ids are reported on the error either way.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from wwe_shipping.core.config import settings
from wwe_shipping.core.events import EventBus, WaybillCreated
from wwe_shipping.core.exceptions import (
    AlreadyLabeledError,
    LabelGenerationError,
    ProviderError,
)
from wwe_shipping.core.order_locks import OrderLocks, order_locks
from wwe_shipping.models.order import Order
from wwe_shipping.models.shipment import (
    LabelResult,
    LabelState,
    PackageDescriptor,
    ShipmentRecord,
    stored_tracking_numbers,
)
from wwe_shipping.services.order_store import OrderStore
from wwe_shipping.services.package_planner import PackagePlanner
from wwe_shipping.services.pre_label_setup import PreLabelSetup
from wwe_shipping.services.ups_client import UPSClient
from wwe_shipping.services.ups_payloads import (
    ShipperProfile,
    build_international_forms,
    build_ship_to,
    build_shipment_request,
)

logger = logging.getLogger(__name__)


@dataclass
class LabelConfig:
    service_code: str = "17"
    label_format: str = "GIF"
    compensate_partial_labels: bool = False
    default_country_of_origin: str = "FR"

    @classmethod
    def from_settings(cls) -> "LabelConfig":
        return cls(
            service_code=settings.SHIPPING_SERVICE_CODE,
            label_format=settings.SHIPPING_LABEL_FORMAT,
            compensate_partial_labels=settings.SHIPPING_COMPENSATE_PARTIAL_LABELS,
            default_country_of_origin=settings.CUSTOMS_DEFAULT_COUNTRY_OF_ORIGIN,
        )


@dataclass
class PackageLabel:
    """Labels returned for one ShipmentRequest."""
    shipment_id: Optional[str]
    tracking_numbers: List[str]
    images: List[str]
    image_format: Optional[str]


def parse_shipment_response(response: Dict[str, Any]) -> PackageLabel:
    """
    Pull identifiers and label images out of a ShipmentResponse.

    PackageResults is a single object for one package and a list otherwise.
    Results without both a tracking number and an image are skipped.

    Raises:
        ValueError: no ShipmentResults in the response
    """
    results = (response.get("ShipmentResponse") or {}).get("ShipmentResults")
    if not results:
        raise ValueError("Invalid API response (no ShipmentResults)")

    package_results = results.get("PackageResults") or []
    if isinstance(package_results, dict):
        package_results = [package_results]

    tracking_numbers: List[str] = []
    images: List[str] = []
    image_format = None
    for package_result in package_results:
        tracking = package_result.get("TrackingNumber")
        label = package_result.get("ShippingLabel") or {}
        image = label.get("GraphicImage")
        if tracking and image:
            tracking_numbers.append(str(tracking))
            images.append(image)
            image_format = (label.get("ImageFormat") or {}).get("Code") or image_format

    return PackageLabel(
        shipment_id=results.get("ShipmentIdentificationNumber"),
        tracking_numbers=tracking_numbers,
        images=images,
        image_format=image_format,
    )


class ShipmentOrchestrator:
    """
    Label generation state machine.

    Usage:
        orchestrator = ShipmentOrchestrator(ups_client, store, events=bus)
        result = await orchestrator.generate_label(order)
        result.record.tracking_numbers
    """

    def __init__(
        self,
        carrier: UPSClient,
        store: OrderStore,
        planner: Optional[PackagePlanner] = None,
        shipper: Optional[ShipperProfile] = None,
        config: Optional[LabelConfig] = None,
        events: Optional[EventBus] = None,
        locks: Optional[OrderLocks] = None,
        pre_label: Optional[PreLabelSetup] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.carrier = carrier
        self.store = store
        self.planner = planner or PackagePlanner()
        self.shipper = shipper or ShipperProfile.from_settings()
        self.config = config or LabelConfig.from_settings()
        self.events = events or EventBus()
        self.locks = locks or order_locks
        self.pre_label = pre_label
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def generate_label(self, order: Order) -> LabelResult:
        """
        Generate one label per planned package.

        Returns:
            LabelResult in state LABELED with the persisted ShipmentRecord

        Raises:
            AddressIncompleteError: destination incomplete, nothing sent to UPS
            ShippingValidationError: planning failed
            AlreadyLabeledError: order already has labels
            LabelGenerationError: a package failed; nothing persisted
            ConfigError: UPS credentials or account missing
        """
        correlation_id = str(uuid.uuid4())
        logger.info(f"Starting label generation: order_id={order.id}, correlation_id={correlation_id}")

        # Step 1: Address check and recipient block
        ship_to = build_ship_to(order)

        # Step 2: Plan packages
        packages = self.planner.plan(order)

        async with self.locks.hold(order.id, "label"):
            # Step 3: Idempotency guard
            existing = stored_tracking_numbers(await self.store.get_attributes(order.id))
            if existing:
                raise AlreadyLabeledError(
                    f"Order {order.number} already has labels (tracking {', '.join(existing)})",
                    details={"tracking_numbers": existing},
                )

            state = self._transition_state(order.id, LabelState.UNLABELED, LabelState.LABELING, correlation_id)

            # Step 4: Parcel content pre-registration, never blocking
            pre_label_registered = False
            if self.pre_label is not None:
                pre_label_registered = await self.pre_label.register(order)

            # Step 5: One carrier call per package
            try:
                record = await self._label_packages(order, packages, ship_to)
            except LabelGenerationError as e:
                self._transition_state(order.id, state, LabelState.LABEL_FAILED, correlation_id)
                await self.store.add_note(order.id, f"UPS label generation failed: {e.message}")
                await self.store.save(order.id)
                raise

            # Step 6: Persist
            await self.store.set_attributes(order.id, record.to_attributes())
            await self.store.add_note(
                order.id,
                f"UPS label(s) generated. Tracking: {', '.join(record.tracking_numbers)}. "
                f"Format: {record.label_format}",
            )
            await self.store.save(order.id)
            state = self._transition_state(order.id, state, LabelState.LABELED, correlation_id)

        # Step 7: Notify listeners once the lock is released
        await self.events.publish(WaybillCreated(
            order_id=order.id,
            tracking_numbers=list(record.tracking_numbers),
            shipment_ids=list(record.shipment_ids),
            created_at=record.created_at,
        ))

        return LabelResult(
            order_id=order.id,
            state=state,
            record=record,
            correlation_id=correlation_id,
            pre_label_registered=pre_label_registered,
        )

    async def _label_packages(
        self,
        order: Order,
        packages: List[PackageDescriptor],
        ship_to: Dict[str, Any],
    ) -> ShipmentRecord:
        created_at = self.clock()
        forms = build_international_forms(
            order,
            default_origin=self.config.default_country_of_origin,
            invoice_date=created_at,
        )

        tracking_numbers: List[str] = []
        labels: List[str] = []
        shipment_ids: List[str] = []
        received_format = None

        for index, package in enumerate(packages):
            request_body = build_shipment_request(
                order,
                package,
                self.shipper,
                ship_to,
                forms,
                package_index=index,
                service_code=self.config.service_code,
                label_format=self.config.label_format,
            )
            try:
                response = await self.carrier.create_shipment(request_body)
                package_label = parse_shipment_response(response)
            except (ProviderError, ValueError) as e:
                reason = e.message if isinstance(e, ProviderError) else str(e)
                raise await self._package_failure(
                    order, index, len(packages), reason, shipment_ids, tracking_numbers,
                ) from e

            if package_label.shipment_id:
                shipment_ids.append(str(package_label.shipment_id))
            if not package_label.tracking_numbers:
                raise await self._package_failure(
                    order, index, len(packages), "Missing tracking or label image data",
                    shipment_ids, tracking_numbers,
                )

            tracking_numbers.extend(package_label.tracking_numbers)
            labels.extend(package_label.images)
            received_format = package_label.image_format or received_format
            logger.info(
                f"Label OK (package {index + 1}/{len(packages)}) order {order.id} -> "
                f"tracking {', '.join(package_label.tracking_numbers)}"
            )

        return ShipmentRecord(
            tracking_numbers=tracking_numbers,
            labels=labels,
            label_format=received_format or self.config.label_format.upper(),
            shipment_ids=shipment_ids,
            created_at=created_at,
        )

    async def _package_failure(
        self,
        order: Order,
        index: int,
        package_count: int,
        reason: str,
        shipment_ids: List[str],
        tracking_numbers: List[str],
    ) -> LabelGenerationError:
        """Build the error for a failed package, voiding earlier shipments when configured."""
        orphaned = list(shipment_ids) if shipment_ids else list(tracking_numbers)
        compensated = False

        if orphaned:
            logger.error(
                f"Order {order.id}: package {index + 1}/{package_count} failed after "
                f"{len(orphaned)} shipment(s) were created at UPS: {', '.join(orphaned)}"
            )
            if self.config.compensate_partial_labels:
                compensated = await self._compensate(order.id, orphaned)

        message = f"Package {index + 1}/{package_count} for order {order.number} failed: {reason}"
        if orphaned and not compensated:
            message += f". Shipments left at UPS: {', '.join(orphaned)}"
        elif compensated:
            message += f". Voided earlier shipments: {', '.join(orphaned)}"

        return LabelGenerationError(
            message,
            package_index=index,
            orphaned_shipment_ids=orphaned,
            compensated=compensated,
        )

    async def _compensate(self, order_id: int, identifiers: List[str]) -> bool:
        """Void shipments created before a failure. Returns True when all voided."""
        all_voided = True
        for identifier in identifiers:
            try:
                result = await self.carrier.void_shipment(identifier)
                logger.info(f"Order {order_id}: compensating void of {identifier} -> {result.status.value}")
            except ProviderError as e:
                all_voided = False
                logger.error(f"Order {order_id}: compensating void of {identifier} failed: {e.message}")
        return all_voided

    def _transition_state(
        self,
        order_id: int,
        old_state: LabelState,
        new_state: LabelState,
        correlation_id: str,
    ) -> LabelState:
        logger.info(
            f"Order {order_id} label state: {old_state.value} -> {new_state.value} "
            f"(correlation_id={correlation_id})"
        )
        return new_state
