"""
Tests for parcel content pre-registration.
"""
import json

import httpx
import pytest

from wwe_shipping.core.exceptions import IParcelError, MissingCredentialsError
from wwe_shipping.models.registration import (
    PRE_LABEL_DATA_KEY,
    PRE_LABEL_ERROR_KEY,
    PRE_LABEL_SUBMITTED_KEY,
    PRE_LABEL_VOIDED_KEY,
    PRE_LABEL_VOIDED_TRACKING_KEY,
)
from wwe_shipping.services.iparcel_client import (
    IParcelClient,
    IParcelCredentials,
    build_submit_parcel_payload,
)
from wwe_shipping.services.pre_label_setup import PreLabelSetup


def make_iparcel_client(handler, private_key="priv-key"):
    client = IParcelClient(IParcelCredentials(private_key=private_key, public_key="pub-key", company_id="42"))
    client._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


class TestSubmitParcelPayload:
    """Test the SubmitParcel body."""

    def test_payload_fields(self, sample_order):
        payload = build_submit_parcel_payload(sample_order, "priv-key")

        assert payload["TrackingNumber"] == "PRE_LABEL_1001"
        assert payload["DDP"] is False
        assert payload["TrackByEmail"] is True
        assert payload["AddressInfo"]["Billing"] == payload["AddressInfo"]["Shipping"]
        assert "ControlNumber" not in payload["AddressInfo"]["Shipping"]
        item = payload["ItemDetailsList"][0]
        assert item["CustWeightLbs"] == 3.31
        assert item["Quantity"] == 2
        assert item["CountryOfOrigin"] == "FR"

    def test_tax_id_for_brazil(self, sample_order):
        sample_order.shipping_address.country = "BR"
        sample_order.tax_id = "123.456.789-09"

        payload = build_submit_parcel_payload(sample_order, "priv-key")

        assert payload["AddressInfo"]["Shipping"]["ControlNumber"] == "123.456.789-09"


class TestIParcelClient:
    @pytest.mark.asyncio
    async def test_submit_success(self, sample_order):
        seen = {}

        def handler(request):
            seen["key"] = request.url.params["key"]
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "data": {"ParcelID": 9001}})

        client = make_iparcel_client(handler)
        response = await client.submit_parcel(sample_order)

        assert response["data"] == {"ParcelID": 9001}
        assert seen["key"] == "priv-key"
        assert seen["headers"]["Key"] == "pub-key"
        assert seen["headers"]["Company-Id"] == "42"

    @pytest.mark.asyncio
    async def test_success_false(self, sample_order):
        client = make_iparcel_client(lambda r: httpx.Response(200, json={"success": False, "message": "Invalid SKU"}))

        with pytest.raises(IParcelError) as exc_info:
            await client.submit_parcel(sample_order)

        assert exc_info.value.message == "Invalid SKU"

    @pytest.mark.asyncio
    async def test_http_error(self, sample_order):
        client = make_iparcel_client(lambda r: httpx.Response(500, text="boom"))

        with pytest.raises(IParcelError):
            await client.submit_parcel(sample_order)

    @pytest.mark.asyncio
    async def test_missing_key(self, sample_order):
        client = make_iparcel_client(lambda r: httpx.Response(200), private_key="")

        with pytest.raises(MissingCredentialsError):
            await client.submit_parcel(sample_order)


class TestPreLabelSetup:
    """Test the best-effort registration hook."""

    @pytest.mark.asyncio
    async def test_register_stores_data(self, store, sample_order, clock):
        client = make_iparcel_client(lambda r: httpx.Response(200, json={"success": True, "data": {"ParcelID": 9001}}))
        setup = PreLabelSetup(store, client=client, clock=clock)

        assert await setup.register(sample_order) is True

        attributes = await store.get_attributes(sample_order.id)
        assert attributes[PRE_LABEL_SUBMITTED_KEY] is True
        assert attributes[PRE_LABEL_DATA_KEY] == {"ParcelID": 9001}
        status = await setup.get_status(sample_order.id)
        assert status["status"] == "success"

    @pytest.mark.asyncio
    async def test_register_is_idempotent(self, store, sample_order, clock):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"success": True})

        setup = PreLabelSetup(store, client=make_iparcel_client(handler), clock=clock)

        await setup.register(sample_order)
        await setup.register(sample_order)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_failure_recorded_not_raised(self, store, sample_order, clock):
        setup = PreLabelSetup(
            store,
            client=make_iparcel_client(lambda r: httpx.Response(503, text="down")),
            clock=clock,
        )

        assert await setup.register(sample_order) is False

        attributes = await store.get_attributes(sample_order.id)
        assert attributes[PRE_LABEL_ERROR_KEY] == "Pre-Label SubmitParcel failed: HTTP 503"
        assert (await setup.get_status(sample_order.id))["status"] == "error"

    @pytest.mark.asyncio
    async def test_voided_order_not_registered_again(self, store, sample_order, clock):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"success": True, "data": {"ParcelID": 1}})

        setup = PreLabelSetup(store, client=make_iparcel_client(handler), clock=clock)
        await setup.register(sample_order)

        assert await setup.mark_voided(sample_order.id, "1ZA1B2C30400000001") is True
        await setup.register(sample_order)

        attributes = await store.get_attributes(sample_order.id)
        assert len(calls) == 1
        assert PRE_LABEL_DATA_KEY not in attributes
        assert attributes[PRE_LABEL_VOIDED_KEY] is True
        assert attributes[PRE_LABEL_VOIDED_TRACKING_KEY] == "1ZA1B2C30400000001"

    @pytest.mark.asyncio
    async def test_mark_voided_unregistered(self, store, sample_order, clock):
        setup = PreLabelSetup(store, client=make_iparcel_client(lambda r: httpx.Response(200)), clock=clock)

        assert await setup.mark_voided(sample_order.id, "1Z") is False

    @pytest.mark.asyncio
    async def test_disabled(self, store, sample_order):
        setup = PreLabelSetup(store, client=None)

        assert await setup.register(sample_order) is False
