"""
Tests for the UPS API client.
"""
import base64
import json
from datetime import datetime, timezone

import httpx
import pytest

from wwe_shipping.core.exceptions import (
    AuthFailedError,
    CustomsSubmissionError,
    MissingCredentialsError,
    UPSAPIError,
)
from wwe_shipping.models.shipment import VoidStatus
from wwe_shipping.services.token_cache import InMemoryTokenCache, cache_lifetime
from wwe_shipping.services.ups_client import (
    UPSClient,
    UPSCredentials,
    extract_error_code,
    extract_error_message,
)

TOKEN_BODY = {"access_token": "tok-123", "expires_in": 14399}


def make_client(handler, token_cache=None, client_id="cid", client_secret="secret"):
    client = UPSClient(
        credentials=UPSCredentials(
            client_id=client_id,
            client_secret=client_secret,
            account_number="A1B2C3",
            use_sandbox=True,
        ),
        token_cache=token_cache or InMemoryTokenCache(),
    )
    client._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


def ups_error(code, message, status=400):
    return httpx.Response(status, json={"response": {"errors": [{"code": code, "message": message}]}})


class TestAuthentication:
    """Test OAuth token handling."""

    @pytest.mark.asyncio
    async def test_token_fetched_once_and_cached(self):
        """Test the token endpoint is hit once for several calls."""
        calls = []

        def handler(request: httpx.Request):
            calls.append(request.url.path)
            if request.url.path.endswith("/oauth/token"):
                assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"cid:secret").decode()
                return httpx.Response(200, json=TOKEN_BODY)
            assert request.headers["Authorization"] == "Bearer tok-123"
            return httpx.Response(200, json={"RateResponse": {}})

        client = make_client(handler)
        await client.rate({})
        await client.rate({})
        await client.close()

        assert calls.count("/security/v1/oauth/token") == 1
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        """Test no network call is made without credentials."""
        def handler(request):
            raise AssertionError("no request expected")

        client = make_client(handler, client_id="")

        with pytest.raises(MissingCredentialsError):
            await client.authenticate()

    @pytest.mark.asyncio
    async def test_auth_rejected(self):
        def handler(request):
            return httpx.Response(401, json={"error_description": "Invalid client"})

        client = make_client(handler)

        with pytest.raises(AuthFailedError) as exc_info:
            await client.authenticate()

        assert "Invalid client" in exc_info.value.message
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_unauthorized_call_clears_cache(self):
        """Test a 401 on an API call drops the cached token."""
        cache = InMemoryTokenCache()
        await cache.set("stale", 3600)

        def handler(request):
            return httpx.Response(401, json={"response": {"errors": [{"code": "250002", "message": "Invalid token"}]}})

        client = make_client(handler, token_cache=cache)

        with pytest.raises(UPSAPIError):
            await client.rate({})

        assert await cache.get() is None

    @pytest.mark.parametrize("expires_in,expected", [
        (14399, 14279),
        (None, 3480),
        (100, 60),
        ("garbage", 3480),
    ])
    def test_cache_lifetime(self, expires_in, expected):
        assert cache_lifetime(expires_in) == expected


class TestErrorExtraction:
    """Test carrier error unwrapping."""

    def test_rest_errors(self):
        data = {"response": {"errors": [{"code": "120802", "message": "Address Validation Error"}]}}

        assert extract_error_message(data) == "120802: Address Validation Error"
        assert extract_error_code(data) == "120802"

    def test_fault_details(self):
        data = {"Fault": {"detail": {"Errors": {"ErrorDetail": {
            "PrimaryErrorCode": {"Code": "190117", "Description": "Shipment already voided"}
        }}}}}

        assert extract_error_message(data) == "190117: Shipment already voided"
        assert extract_error_code(data) == "190117"

    def test_raw_body_fallback(self):
        """Test markup is stripped from non-JSON bodies."""
        assert extract_error_message(None, "<html><b>Bad Gateway</b></html>") == "Bad Gateway"
        assert extract_error_message(None) == "Unknown API error."

    @pytest.mark.asyncio
    async def test_api_error_carries_carrier_code(self):
        def handler(request):
            if request.url.path.endswith("/oauth/token"):
                return httpx.Response(200, json=TOKEN_BODY)
            return ups_error("111210", "The requested service is unavailable between the selected locations")

        client = make_client(handler)

        with pytest.raises(UPSAPIError) as exc_info:
            await client.create_shipment({})

        assert exc_info.value.code == "111210"
        assert exc_info.value.status_code == 400
        assert exc_info.value.retryable is True


class TestVoid:
    """Test idempotent void."""

    @pytest.mark.asyncio
    async def test_void_success(self):
        def handler(request):
            if request.url.path.endswith("/oauth/token"):
                return httpx.Response(200, json=TOKEN_BODY)
            assert request.method == "DELETE"
            assert request.url.path.endswith("/void/cancel/1ZA1B2C30400000001")
            return httpx.Response(200, json={"VoidShipmentResponse": {
                "Response": {"ResponseStatus": {"Code": "1", "Description": "Success"}},
                "SummaryResult": {"Status": {"Code": "1", "Description": "Voided"}},
            }})

        client = make_client(handler)
        result = await client.void_shipment(" 1ZA1B2C30400000001 ")

        assert result.status == VoidStatus.SUCCESS
        assert result.identifier == "1ZA1B2C30400000001"

    @pytest.mark.asyncio
    async def test_already_voided_is_success(self):
        """Test carrier code 190117 is reported as ALREADY_VOIDED."""
        def handler(request):
            if request.url.path.endswith("/oauth/token"):
                return httpx.Response(200, json=TOKEN_BODY)
            return ups_error("190117", "The shipment has already been voided")

        client = make_client(handler)
        result = await client.void_shipment("1ZA1B2C30400000001")

        assert result.status == VoidStatus.ALREADY_VOIDED
        assert result.is_success

    @pytest.mark.asyncio
    async def test_void_other_error_raises(self):
        def handler(request):
            if request.url.path.endswith("/oauth/token"):
                return httpx.Response(200, json=TOKEN_BODY)
            return ups_error("190102", "No shipment found within the allowed void period")

        client = make_client(handler)

        with pytest.raises(UPSAPIError) as exc_info:
            await client.void_shipment("1ZA1B2C30400000001")

        assert exc_info.value.code == "190102"


class TestPaperlessDocuments:
    """Test commercial invoice upload and link."""

    @pytest.mark.asyncio
    async def test_upload_returns_document_id(self):
        seen = {}

        def handler(request):
            if request.url.path.endswith("/oauth/token"):
                return httpx.Response(200, json=TOKEN_BODY)
            seen["shipper"] = request.headers.get("ShipperNumber")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"UploadResponse": {"FormsHistoryDocumentID": {"DocumentID": "2013-12-04-00.15.33.207814"}}})

        client = make_client(handler)
        document_id = await client.upload_customs_document("COMMERCIAL INVOICE\n", file_name="ci.txt")

        form = seen["body"]["UploadRequest"]["UserCreatedForm"]
        assert document_id == "2013-12-04-00.15.33.207814"
        assert seen["shipper"] == "A1B2C3"
        assert form["UserCreatedFormFileFormat"] == "txt"
        assert form["UserCreatedFormDocumentType"] == "002"
        assert base64.b64decode(form["UserCreatedFormFile"]).decode() == "COMMERCIAL INVOICE\n"

    @pytest.mark.asyncio
    async def test_upload_without_document_id(self):
        def handler(request):
            if request.url.path.endswith("/oauth/token"):
                return httpx.Response(200, json=TOKEN_BODY)
            return httpx.Response(200, json={"UploadResponse": {}})

        client = make_client(handler)

        with pytest.raises(CustomsSubmissionError) as exc_info:
            await client.upload_customs_document("x")

        assert exc_info.value.step == "upload"

    @pytest.mark.asyncio
    async def test_link_formats_shipment_time(self):
        seen = {}

        def handler(request):
            if request.url.path.endswith("/oauth/token"):
                return httpx.Response(200, json=TOKEN_BODY)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"PushToImageRepositoryResponse": {"FormsGroupID": "G1"}})

        client = make_client(handler)
        await client.link_document_to_tracking(
            "DOC-1",
            "1ZA1B2C30400000001",
            shipment_time=datetime(2026, 3, 2, 10, 5, 9, tzinfo=timezone.utc),
        )

        request = seen["body"]["PushToImageRepositoryRequest"]
        assert request["ShipmentDateAndTime"] == "2026-03-02-10.05.09"
        assert request["TrackingNumber"] == ["1ZA1B2C30400000001"]
        assert request["FormsHistoryDocumentID"] == {"DocumentID": ["DOC-1"]}


class TestAddressValidation:
    """Test street-level address validation."""

    @pytest.mark.asyncio
    async def test_valid_address_with_candidate(self, us_address):
        seen = {}

        def handler(request):
            if request.url.path.endswith("/oauth/token"):
                return httpx.Response(200, json=TOKEN_BODY)
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"XAVResponse": {
                "ValidAddressIndicator": "",
                "Candidate": {"AddressKeyFormat": {
                    "AddressLine": ["350 5TH AVE"],
                    "PoliticalDivision2": "NEW YORK",
                    "PoliticalDivision1": "NY",
                    "PostcodePrimaryLow": "10118",
                    "CountryCode": "US",
                }},
            }})

        client = make_client(handler)
        result = await client.validate_address(us_address)

        assert seen["params"] == {"regionalrequestindicator": "true", "maximumcandidatelistsize": "1"}
        assert result.valid is True
        assert result.candidate.address_1 == "350 5TH AVE"
        assert result.candidate.city == "NEW YORK"

    @pytest.mark.asyncio
    async def test_no_candidates(self, us_address):
        def handler(request):
            if request.url.path.endswith("/oauth/token"):
                return httpx.Response(200, json=TOKEN_BODY)
            return httpx.Response(200, json={"XAVResponse": {"NoCandidatesIndicator": ""}})

        client = make_client(handler)
        result = await client.validate_address(us_address)

        assert result.valid is False
        assert result.candidate is None
