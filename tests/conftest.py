"""
Shared fixtures for the shipping engine tests.
"""
import os

# Set test environment before the package reads settings
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = ""
os.environ["REDIS_URL"] = ""
os.environ["ARQ_REDIS_URL"] = ""
os.environ["UPS_CLIENT_ID"] = "test-client-id"
os.environ["UPS_CLIENT_SECRET"] = "test-client-secret"
os.environ["UPS_ACCOUNT_NUMBER"] = "A1B2C3"
os.environ["UPS_USE_SANDBOX"] = "true"
os.environ["IPARCEL_ENABLED"] = "false"

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from wwe_shipping.core.order_locks import OrderLocks
from wwe_shipping.core.scheduler import InMemoryScheduler
from wwe_shipping.models.order import Address, LineItem, Order
from wwe_shipping.services.customs_workflow import CustomsConfig
from wwe_shipping.services.order_store import InMemoryOrderStore
from wwe_shipping.services.package_planner import PlannerConfig
from wwe_shipping.services.shipment_orchestrator import LabelConfig
from wwe_shipping.services.ups_client import UPSClient
from wwe_shipping.services.ups_payloads import ShipperProfile

FIXED_NOW = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that tests move forward by hand."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class SharedLockRedis:
    """
    Stands in for the Redis connection behind RedisOrderLocks: every lock
    created from one instance sees the same held names, like processes
    sharing one Redis server.
    """

    def __init__(self):
        self.held = set()

    def lock(self, name, timeout=None, blocking_timeout=None):
        return _SharedLock(self, name, blocking_timeout)


class _SharedLock:
    def __init__(self, server, name, blocking_timeout):
        self.server = server
        self.name = name
        self.blocking_timeout = blocking_timeout

    async def acquire(self):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.blocking_timeout or 0)
        while self.name in self.server.held:
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.001)
        self.server.held.add(self.name)
        return True

    async def release(self):
        self.server.held.discard(self.name)


def shipment_response(tracking: str, shipment_id: str = None, image: str = "R0lGODlhAQABAAAAACw=") -> dict:
    """ShipmentResponse body for one package."""
    return {
        "ShipmentResponse": {
            "Response": {"ResponseStatus": {"Code": "1", "Description": "Success"}},
            "ShipmentResults": {
                "ShipmentIdentificationNumber": shipment_id or tracking,
                "PackageResults": {
                    "TrackingNumber": tracking,
                    "ShippingLabel": {
                        "ImageFormat": {"Code": "GIF"},
                        "GraphicImage": image,
                    },
                },
            },
        }
    }


def rate_response(amount: str = "24.50", currency: str = "USD", negotiated: str = None) -> dict:
    rated = {"TotalCharges": {"CurrencyCode": currency, "MonetaryValue": amount}}
    if negotiated is not None:
        rated["NegotiatedRateCharges"] = {
            "TotalCharge": {"CurrencyCode": currency, "MonetaryValue": negotiated}
        }
    return {"RateResponse": {"RatedShipment": rated}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def shipper():
    return ShipperProfile(
        name="Comic Vault Paris",
        account_number="A1B2C3",
        attention_name="Shipping Desk",
        phone="+33 1 23 45 67 89",
        email="shipping@example.com",
        address_line1="12 Rue de la Paix",
        city="Paris",
        postal_code="75002",
        country="FR",
    )


@pytest.fixture
def us_address():
    return Address(
        first_name="Jane",
        last_name="Doe",
        address_1="350 Fifth Avenue",
        address_2="Suite 4200",
        city="New York",
        state="NY",
        postcode="10118",
        country="US",
        phone="+1 (212) 555-0100",
        email="jane@example.com",
    )


@pytest.fixture
def sample_order(us_address):
    """International order that fits in one package (3.2 KGS)."""
    return Order(
        id=1001,
        order_number="1001",
        shipping_address=us_address,
        items=[
            LineItem(
                product_ref="CB-SET-01",
                name="Comic Book Box Set",
                quantity=2,
                weight=1.5,
                unit_value=40.0,
                hs_code="4901.99.00",
            ),
            LineItem(
                product_ref="PST-07",
                name="Poster",
                quantity=1,
                weight=0.2,
                unit_value=15.0,
            ),
        ],
        currency="USD",
        total=95.0,
        billing_email="jane@example.com",
        billing_phone="+1 212 555 0100",
    )


@pytest.fixture
def heavy_order(us_address):
    """37 KGS order: three packages at the 15 KGS ceiling."""
    return Order(
        id=1002,
        order_number="1002",
        shipping_address=us_address,
        items=[
            LineItem(product_ref="STAT-01", name="Resin Statue", quantity=1, weight=37.0, unit_value=450.0),
        ],
        currency="USD",
        total=450.0,
    )


@pytest.fixture
def store(sample_order, heavy_order):
    store = InMemoryOrderStore()
    store.add_order(sample_order)
    store.add_order(heavy_order)
    return store


@pytest.fixture
def scheduler():
    return InMemoryScheduler()


@pytest.fixture
def locks():
    return OrderLocks()


@pytest.fixture
def mock_carrier():
    """UPSClient double; every coroutine method is an AsyncMock."""
    return AsyncMock(spec=UPSClient)


@pytest.fixture
def planner_config():
    return PlannerConfig(max_package_weight=15.0, min_package_weight=0.5, max_packages=10)


@pytest.fixture
def label_config():
    return LabelConfig(
        service_code="17",
        label_format="GIF",
        compensate_partial_labels=False,
        default_country_of_origin="FR",
    )


@pytest.fixture
def customs_config():
    return CustomsConfig(
        auto_submit=True,
        delay_seconds=300,
        max_retries=3,
        retry_delays=[300, 900, 3600],
        default_country_of_origin="FR",
    )
