"""
Shipping Engine

Entry point for the UPS Worldwide Economy shipment lifecycle. Wires the
planner, rate engine, label orchestrator, void reconciler and customs
workflow around one carrier client, one order store and one event bus.

Usage:
    engine = create_shipping_engine(store=SqlOrderStore(db))
    quote = await engine.quote_rate(order)
    result = await engine.generate_label(order)
    await engine.close()
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from wwe_shipping.core.config import settings
from wwe_shipping.core.events import EventBus, WaybillCreated
from wwe_shipping.core.order_locks import OrderLocks, RedisOrderLocks, order_locks
from wwe_shipping.core.scheduler import ArqScheduler, InMemoryScheduler, JobScheduler
from wwe_shipping.models.customs import CustomsSubmission
from wwe_shipping.models.order import Address, Order
from wwe_shipping.models.shipment import LabelResult, PackageDescriptor, RateQuote, VoidBatchResult
from wwe_shipping.services.customs_workflow import CUSTOMS_JOB_NAME, CustomsConfig, CustomsWorkflow
from wwe_shipping.services.health_check import HealthIssue, ShipmentHealthCheck
from wwe_shipping.services.iparcel_client import IParcelClient, create_iparcel_client_from_settings
from wwe_shipping.services.order_store import InMemoryOrderStore, OrderStore
from wwe_shipping.services.package_planner import PackagePlanner, PlannerConfig
from wwe_shipping.services.pre_label_setup import PreLabelSetup
from wwe_shipping.services.rate_engine import RateConfig, RateEngine
from wwe_shipping.services.shipment_orchestrator import LabelConfig, ShipmentOrchestrator
from wwe_shipping.services.token_cache import RedisTokenCache, TokenCache, default_token_cache
from wwe_shipping.services.ups_client import AddressValidationResult, UPSClient, create_ups_client_from_settings
from wwe_shipping.services.ups_payloads import ShipperProfile
from wwe_shipping.services.void_reconciler import VoidReconciler

logger = logging.getLogger(__name__)


class ShippingEngine:
    """Facade over the shipping components. Collaborators are injectable for tests."""

    def __init__(
        self,
        carrier: Optional[UPSClient] = None,
        store: Optional[OrderStore] = None,
        scheduler: Optional[JobScheduler] = None,
        events: Optional[EventBus] = None,
        token_cache: Optional[TokenCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
        shipper: Optional[ShipperProfile] = None,
        iparcel_client: Optional[IParcelClient] = None,
        planner_config: Optional[PlannerConfig] = None,
        rate_config: Optional[RateConfig] = None,
        label_config: Optional[LabelConfig] = None,
        customs_config: Optional[CustomsConfig] = None,
        locks: Optional[OrderLocks] = None,
        owns_scheduler: bool = False,
    ):
        self.carrier = carrier or create_ups_client_from_settings(token_cache)
        self.store = store or InMemoryOrderStore()
        self.scheduler = scheduler or InMemoryScheduler()
        self.events = events or EventBus()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.shipper = shipper or ShipperProfile.from_settings()
        self.locks = locks or order_locks
        self.iparcel_client = iparcel_client
        self._owns_scheduler = owns_scheduler

        label_config = label_config or LabelConfig.from_settings()

        self.planner = PackagePlanner(planner_config or PlannerConfig.from_settings())
        self.pre_label = None
        if iparcel_client is not None:
            self.pre_label = PreLabelSetup(
                self.store,
                client=iparcel_client,
                default_origin=label_config.default_country_of_origin,
                clock=self.clock,
            )

        self.rates = RateEngine(
            self.carrier,
            planner=self.planner,
            shipper=self.shipper,
            config=rate_config or RateConfig.from_settings(),
        )
        self.customs = CustomsWorkflow(
            self.carrier,
            self.store,
            self.scheduler,
            shipper=self.shipper,
            config=customs_config or CustomsConfig.from_settings(),
            locks=self.locks,
            clock=self.clock,
        )
        self.orchestrator = ShipmentOrchestrator(
            self.carrier,
            self.store,
            planner=self.planner,
            shipper=self.shipper,
            config=label_config,
            events=self.events,
            locks=self.locks,
            pre_label=self.pre_label,
            clock=self.clock,
        )
        self.voids = VoidReconciler(
            self.carrier,
            self.store,
            events=self.events,
            locks=self.locks,
            pre_label=self.pre_label,
            customs=self.customs,
            clock=self.clock,
        )

        self.events.subscribe(WaybillCreated, self.customs.on_waybill_created)
        if isinstance(self.scheduler, InMemoryScheduler):
            self.scheduler.register(CUSTOMS_JOB_NAME, self.customs.submit)

    # ==================== Entry points ====================

    async def plan_packages(self, order: Order) -> List[PackageDescriptor]:
        return self.planner.plan(order)

    async def quote_rate(self, order: Order) -> RateQuote:
        return await self.rates.quote(order)

    async def generate_label(self, order: Order) -> LabelResult:
        await self.store.register_order(order)
        return await self.orchestrator.generate_label(order)

    async def void_shipment(
        self,
        order_id: int,
        identifiers: Union[str, Iterable[str], None] = None,
    ) -> VoidBatchResult:
        return await self.voids.void_all(order_id, identifiers)

    async def submit_customs(self, order_id: int) -> CustomsSubmission:
        """Operator-initiated submission; restarts a failed one."""
        return await self.customs.submit(order_id, manual=True)

    # ==================== Operator helpers ====================

    async def validate_address(self, address: Address) -> AddressValidationResult:
        return await self.carrier.validate_address(address)

    async def customs_status(self, order_id: int) -> Dict[str, Any]:
        return await self.customs.get_status(order_id)

    async def pre_label_status(self, order_id: int) -> Dict[str, Any]:
        if self.pre_label is None:
            return {"status": "disabled", "message": "Parcel pre-registration is not enabled"}
        return await self.pre_label.get_status(order_id)

    async def health_check(self) -> List[HealthIssue]:
        return await ShipmentHealthCheck(self.store).scan()

    async def close(self):
        """Release HTTP clients (and the arq pool when the engine opened it)."""
        await self.carrier.close()
        if self.iparcel_client is not None:
            await self.iparcel_client.close()
        if self._owns_scheduler and isinstance(self.scheduler, ArqScheduler):
            await self.scheduler.close()


def create_shipping_engine(
    store: Optional[OrderStore] = None,
    scheduler: Optional[JobScheduler] = None,
    events: Optional[EventBus] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> ShippingEngine:
    """
    Build a ShippingEngine from application settings.

    - Token cache and order locks: Redis when REDIS_URL is set, process
      memory otherwise
    - Scheduler: arq when a Redis URL is set, in-memory otherwise
    - Parcel pre-registration: only when IPARCEL_ENABLED
    """
    token_cache = RedisTokenCache() if settings.REDIS_URL else default_token_cache
    locks = RedisOrderLocks() if settings.REDIS_URL else order_locks

    owns_scheduler = False
    if scheduler is None:
        redis_url = settings.ARQ_REDIS_URL or settings.REDIS_URL
        if redis_url:
            scheduler = ArqScheduler(redis_url=redis_url)
            owns_scheduler = True
            if not settings.REDIS_URL:
                logger.warning("ARQ_REDIS_URL without REDIS_URL - order locks do not span the worker process")
        else:
            logger.warning("No Redis URL configured - customs jobs run in-process only")
            scheduler = InMemoryScheduler()

    iparcel_client = create_iparcel_client_from_settings() if settings.IPARCEL_ENABLED else None

    return ShippingEngine(
        carrier=create_ups_client_from_settings(token_cache),
        store=store,
        scheduler=scheduler,
        events=events,
        clock=clock,
        iparcel_client=iparcel_client,
        locks=locks,
        owns_scheduler=owns_scheduler,
    )
