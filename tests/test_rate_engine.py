"""
Tests for rate quoting.
"""
import pytest

from conftest import rate_response
from wwe_shipping.core.exceptions import (
    AddressIncompleteError,
    CurrencyMismatchError,
    NoRateFromProviderError,
    UPSAPIError,
)
from wwe_shipping.services.package_planner import PackagePlanner
from wwe_shipping.services.rate_engine import RateConfig, RateEngine, extract_rate


class TestExtractRate:
    """Test RateResponse parsing."""

    def test_negotiated_preferred(self):
        assert extract_rate(rate_response("30.00", negotiated="21.75")) == (21.75, "USD", True)

    def test_published_fallback(self):
        assert extract_rate(rate_response("30.00")) == (30.0, "USD", False)

    def test_rated_shipment_list(self):
        response = {"RateResponse": {"RatedShipment": [
            {"TotalCharges": {"CurrencyCode": "EUR", "MonetaryValue": "18.20"}},
            {"TotalCharges": {"CurrencyCode": "EUR", "MonetaryValue": "99.00"}},
        ]}}

        assert extract_rate(response) == (18.2, "EUR", False)

    def test_no_rate(self):
        assert extract_rate({"RateResponse": {}})[0] is None
        assert extract_rate({})[0] is None


class TestRateEngine:
    """Test RateEngine.quote."""

    @pytest.fixture
    def engine(self, mock_carrier, planner_config, shipper):
        return RateEngine(
            mock_carrier,
            planner=PackagePlanner(planner_config),
            shipper=shipper,
            config=RateConfig(service_code="17", handling_fee=1.0),
        )

    @pytest.mark.asyncio
    async def test_quote_adds_handling_fee(self, engine, mock_carrier, sample_order):
        mock_carrier.rate.return_value = rate_response("30.00", negotiated="21.75")

        quote = await engine.quote(sample_order)

        assert quote.cost == 22.75
        assert quote.provider_charge == 21.75
        assert quote.handling_fee == 1.0
        assert quote.negotiated is True
        assert quote.currency == "USD"
        assert quote.package_count == 1
        assert quote.weight == 3.2

    @pytest.mark.asyncio
    async def test_rate_request_shape(self, engine, mock_carrier, heavy_order):
        """Test every planned package is rated in one WW Economy request."""
        mock_carrier.rate.return_value = rate_response("120.00")

        quote = await engine.quote(heavy_order)

        body = mock_carrier.rate.call_args.args[0]["RateRequest"]["Shipment"]
        assert body["Service"] == {"Code": "17"}
        assert len(body["Package"]) == 3
        assert body["Package"][0]["PackagingType"]["Code"] == "02"
        assert body["ShipmentRatingOptions"] == {"NegotiatedRatesIndicator": "1"}
        assert body["PaymentInformation"]["ShipmentCharge"]["BillShipper"]["AccountNumber"] == "A1B2C3"
        assert body["ShipTo"]["Address"]["CountryCode"] == "US"
        assert quote.package_count == 3

    @pytest.mark.asyncio
    async def test_no_rate_raises(self, engine, mock_carrier, sample_order):
        """Test an empty response is an error, never an estimate."""
        mock_carrier.rate.return_value = {"RateResponse": {"Response": {}}}

        with pytest.raises(NoRateFromProviderError):
            await engine.quote(sample_order)

    @pytest.mark.asyncio
    async def test_currency_mismatch(self, engine, mock_carrier, sample_order):
        mock_carrier.rate.return_value = rate_response("30.00", currency="EUR")

        with pytest.raises(CurrencyMismatchError) as exc_info:
            await engine.quote(sample_order)

        assert exc_info.value.details["provider_currency"] == "EUR"
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_incomplete_address_never_calls_carrier(self, engine, mock_carrier, sample_order):
        sample_order.shipping_address.postcode = ""

        with pytest.raises(AddressIncompleteError) as exc_info:
            await engine.quote(sample_order)

        assert exc_info.value.details["missing_fields"] == ["postcode"]
        mock_carrier.rate.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_postcode_country_accepted(self, engine, mock_carrier, sample_order):
        """Test destinations without postal codes are rated."""
        sample_order.shipping_address.country = "HK"
        sample_order.shipping_address.postcode = ""
        mock_carrier.rate.return_value = rate_response("19.00")

        quote = await engine.quote(sample_order)

        assert quote.cost == 20.0

    @pytest.mark.asyncio
    async def test_carrier_error_propagates(self, engine, mock_carrier, sample_order):
        mock_carrier.rate.side_effect = UPSAPIError("111210: Service unavailable", code="111210")

        with pytest.raises(UPSAPIError):
            await engine.quote(sample_order)
