"""
Tests for batch void and cleanup.
"""
from unittest.mock import AsyncMock

import pytest

from wwe_shipping.core.events import EventBus, LabelsVoided
from wwe_shipping.core.exceptions import NoShipmentError, UPSAPIError
from wwe_shipping.models.customs import CustomsStatus, CustomsSubmission
from wwe_shipping.models.shipment import (
    TRACKING_NUMBERS_KEY,
    ShipmentRecord,
    VoidResult,
    VoidStatus,
)
from wwe_shipping.services.customs_workflow import CustomsWorkflow
from wwe_shipping.services.void_reconciler import VoidReconciler, normalize_identifiers

TRACKING = ["1ZA1B2C30400000011", "1ZA1B2C30400000012"]


def labeled_record(clock, shipment_ids=None):
    return ShipmentRecord(
        tracking_numbers=list(TRACKING),
        labels=["R0lGODlhAQ==", "R0lGODlhAg=="],
        label_format="GIF",
        shipment_ids=shipment_ids or [],
        created_at=clock(),
    )


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def customs(mock_carrier, store, scheduler, shipper, customs_config, locks, clock):
    return CustomsWorkflow(
        mock_carrier, store, scheduler,
        shipper=shipper, config=customs_config, locks=locks, clock=clock,
    )


@pytest.fixture
def reconciler(mock_carrier, store, events, locks, customs, clock):
    return VoidReconciler(mock_carrier, store, events=events, locks=locks, customs=customs, clock=clock)


class TestNormalizeIdentifiers:
    def test_comma_separated(self):
        assert normalize_identifiers(" A, B ,,A ") == ["A", "B"]

    def test_iterable_and_none(self):
        assert normalize_identifiers(["X", "", "Y", "X"]) == ["X", "Y"]
        assert normalize_identifiers(None) == []


class TestVoidAll:
    """Test VoidReconciler.void_all."""

    @pytest.mark.asyncio
    async def test_all_voided_cleans_order(self, reconciler, mock_carrier, store, sample_order, clock):
        await store.set_attributes(sample_order.id, labeled_record(clock).to_attributes())
        mock_carrier.void_shipment.side_effect = lambda i: VoidResult(i, VoidStatus.SUCCESS)

        batch = await reconciler.void_all(sample_order.id)

        assert batch.success_count == 2
        assert batch.success is True
        assert batch.cleaned is True
        assert batch.message == "2 UPS shipment(s) successfully voided!"
        assert await store.get_attributes(sample_order.id) == {}
        assert "All UPS shipments successfully voided." in store.notes_for(sample_order.id)

    @pytest.mark.asyncio
    async def test_already_voided_counts_as_success(self, reconciler, mock_carrier, store, sample_order, clock):
        """Test repeating a void is harmless."""
        await store.set_attributes(sample_order.id, labeled_record(clock).to_attributes())
        mock_carrier.void_shipment.side_effect = lambda i: VoidResult(i, VoidStatus.ALREADY_VOIDED)

        batch = await reconciler.void_all(sample_order.id)

        assert batch.success_count == 2
        assert batch.errors == []
        assert batch.cleaned is True

    @pytest.mark.asyncio
    async def test_shipment_ids_preferred(self, reconciler, mock_carrier, store, sample_order, clock):
        await store.set_attributes(sample_order.id, labeled_record(clock, ["SHIP-1", "SHIP-2"]).to_attributes())
        mock_carrier.void_shipment.side_effect = lambda i: VoidResult(i, VoidStatus.SUCCESS)

        await reconciler.void_all(sample_order.id)

        assert [c.args[0] for c in mock_carrier.void_shipment.call_args_list] == ["SHIP-1", "SHIP-2"]

    @pytest.mark.asyncio
    async def test_explicit_identifiers(self, reconciler, mock_carrier, store, sample_order, clock):
        await store.set_attributes(sample_order.id, labeled_record(clock).to_attributes())
        mock_carrier.void_shipment.side_effect = lambda i: VoidResult(i, VoidStatus.SUCCESS)

        batch = await reconciler.void_all(sample_order.id, "1ZA1B2C30400000012")

        assert batch.total == 1
        mock_carrier.void_shipment.assert_awaited_once_with("1ZA1B2C30400000012")

    @pytest.mark.asyncio
    async def test_partial_void_still_cleans(self, reconciler, mock_carrier, store, sample_order, clock):
        """Test one success and one failure still removes shipment data."""
        await store.set_attributes(sample_order.id, labeled_record(clock).to_attributes())
        mock_carrier.void_shipment.side_effect = [
            VoidResult(TRACKING[0], VoidStatus.SUCCESS),
            UPSAPIError("190102: No shipment found within the allowed void period", code="190102"),
        ]

        batch = await reconciler.void_all(sample_order.id)

        assert batch.success_count == 1
        assert batch.partial is True
        assert batch.cleaned is True
        assert batch.errors == [f"({TRACKING[1]}) 190102: No shipment found within the allowed void period"]
        assert batch.message.startswith("Partial void success (1/2).")
        assert await store.get_attribute(sample_order.id, TRACKING_NUMBERS_KEY) is None
        assert store.notes_for(sample_order.id)[-1] == (
            "UPS shipments partially voided (1 success, 1 errors). Data cleaned for safety."
        )

    @pytest.mark.asyncio
    async def test_all_failed_keeps_data(self, reconciler, mock_carrier, store, sample_order, clock):
        await store.set_attributes(sample_order.id, labeled_record(clock).to_attributes())
        mock_carrier.void_shipment.side_effect = UPSAPIError("Network error", code="NETWORK_ERROR")

        batch = await reconciler.void_all(sample_order.id)

        assert batch.success_count == 0
        assert batch.cleaned is False
        assert batch.message.startswith("Failed to void all shipments. Success: 0, Failures: 2.")
        assert await store.get_attribute(sample_order.id, TRACKING_NUMBERS_KEY) == TRACKING
        assert store.notes_for(sample_order.id)[-1].startswith("UPS void failed:")

    @pytest.mark.asyncio
    async def test_nothing_to_void(self, reconciler, sample_order):
        with pytest.raises(NoShipmentError):
            await reconciler.void_all(sample_order.id)

    @pytest.mark.asyncio
    async def test_labels_voided_event(self, reconciler, mock_carrier, store, events, sample_order, clock):
        received = []
        events.subscribe(LabelsVoided, AsyncMock(side_effect=received.append))
        await store.set_attributes(sample_order.id, labeled_record(clock).to_attributes())
        mock_carrier.void_shipment.side_effect = lambda i: VoidResult(i, VoidStatus.SUCCESS)

        await reconciler.void_all(sample_order.id)

        assert len(received) == 1
        assert received[0].voided_identifiers == TRACKING
        assert received[0].tracking_numbers == TRACKING
        assert received[0].partial is False


class TestVoidStopsCustoms:
    """Test void interaction with pending customs."""

    @pytest.mark.asyncio
    async def test_pending_customs_job_cancelled(
        self, reconciler, mock_carrier, store, scheduler, sample_order, clock,
    ):
        await store.set_attributes(sample_order.id, labeled_record(clock).to_attributes())
        job_id = await scheduler.schedule_at(clock(), "submit_customs_job", sample_order.id, "customs:1001:abc")
        await store.set_attributes(
            sample_order.id,
            CustomsSubmission(status=CustomsStatus.PENDING, tracking_number=TRACKING[0], job_id=job_id).to_attributes(),
        )
        mock_carrier.void_shipment.side_effect = lambda i: VoidResult(i, VoidStatus.SUCCESS)

        await reconciler.void_all(sample_order.id)

        submission = CustomsSubmission.from_attributes(await store.get_attributes(sample_order.id))
        assert submission.status == CustomsStatus.VOIDED
        assert submission.voided_at == clock.now
        assert scheduler.pending_for(sample_order.id) == []
        assert scheduler.cancelled == ["customs:1001:abc"]
