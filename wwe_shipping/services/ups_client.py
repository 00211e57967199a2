"""
UPS API Client for Worldwide Economy shipments

Implements UPS OAuth 2.0 authentication and the carrier operations the
engine orchestrates:
- Rating (negotiated WW Economy quotes)
- Shipping (one label per package)
- Void (idempotent cancel by shipment id or tracking number)
- Address Validation
- Paperless Documents (commercial invoice upload and link)

All carrier errors are unwrapped into UPSAPIError carrying the UPS code
and description when the response body is parseable.
"""
import base64
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from wwe_shipping.core.config import settings
from wwe_shipping.core.exceptions import (
    AuthFailedError,
    CustomsSubmissionError,
    MissingCredentialsError,
    UPSAPIError,
)
from wwe_shipping.models.order import Address
from wwe_shipping.models.shipment import VoidResult, VoidStatus
from wwe_shipping.services.token_cache import TokenCache, default_token_cache

logger = logging.getLogger(__name__)

# UPS API URLs
UPS_PRODUCTION_URL = "https://onlinetools.ups.com"
UPS_SANDBOX_URL = "https://wwwcie.ups.com"

# OAuth endpoints
OAUTH_TOKEN_PATH = "/security/v1/oauth/token"

# API endpoints
ADDRESS_VALIDATION_PATH = "/api/addressvalidation/v1/1"  # 1 = street level validation
RATING_PATH = "/api/rating/v2409/rate"
SHIPPING_PATH = "/api/shipments/v1801/ship"
VOID_PATH = "/api/shipments/v1/void/cancel"
PAPERLESS_UPLOAD_PATH = "/api/paperlessdocuments/v2/upload"
PAPERLESS_IMAGE_PATH = "/api/paperlessdocuments/v2/image"

# Carrier codes meaning the shipment was voided earlier
ALREADY_VOIDED_CODES = frozenset({"190117", "190118"})

# Only these methods carry a JSON body
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

MAX_ERROR_BODY_CHARS = 300
MAX_DEBUG_BODY_CHARS = 1000

# yyyy-MM-dd-HH.mm.ss as required by Paperless Documents
PAPERLESS_DATETIME_FORMAT = "%Y-%m-%d-%H.%M.%S"

COMMERCIAL_INVOICE_DOCUMENT_TYPE = "002"

_SENSITIVE_KEYS = ("authorization", "access_token", "client_secret", "shippernumber", "accountnumber")


@dataclass
class UPSCredentials:
    """UPS API credentials."""
    client_id: str
    client_secret: str
    account_number: str
    use_sandbox: bool = False

    @property
    def base_url(self) -> str:
        return UPS_SANDBOX_URL if self.use_sandbox else UPS_PRODUCTION_URL

    @property
    def is_complete(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_settings(cls) -> "UPSCredentials":
        return cls(
            client_id=settings.UPS_CLIENT_ID,
            client_secret=settings.UPS_CLIENT_SECRET,
            account_number=settings.UPS_ACCOUNT_NUMBER,
            use_sandbox=settings.UPS_USE_SANDBOX,
        )


@dataclass
class AddressValidationResult:
    """Outcome of a street-level address validation."""
    valid: bool
    candidate: Optional[Address] = None
    messages: List[str] = field(default_factory=list)
    raw_response: Dict = field(default_factory=dict)


def extract_error_message(data: Any, raw_text: str = "") -> str:
    """
    Unwrap the carrier's nested error shapes into one line.

    Order: REST errors list, SOAP-style Fault, plain message, then the raw
    body stripped of markup and truncated.
    """
    if isinstance(data, dict):
        errors = (data.get("response") or {}).get("errors") or []
        if errors and isinstance(errors, list) and errors[0].get("message"):
            return f"{errors[0].get('code', 'N/A')}: {errors[0]['message']}"

        fault_details = (
            ((data.get("Fault") or {}).get("detail") or {}).get("Errors") or {}
        ).get("ErrorDetail")
        if isinstance(fault_details, dict):
            fault_details = [fault_details]
        if fault_details and fault_details[0].get("PrimaryErrorCode"):
            primary = fault_details[0]["PrimaryErrorCode"]
            return f"{primary.get('Code', 'N/A')}: {primary.get('Description', 'N/A')}"

        if data.get("message"):
            return str(data["message"])

    if raw_text:
        return re.sub(r"<[^>]+>", "", raw_text).strip()[:MAX_ERROR_BODY_CHARS]

    return "Unknown API error."


def extract_error_code(data: Any) -> Optional[str]:
    """Carrier error code from either error shape, if any."""
    if not isinstance(data, dict):
        return None

    errors = (data.get("response") or {}).get("errors") or []
    if errors and isinstance(errors, list) and errors[0].get("code"):
        return str(errors[0]["code"])

    fault_details = (
        ((data.get("Fault") or {}).get("detail") or {}).get("Errors") or {}
    ).get("ErrorDetail")
    if isinstance(fault_details, dict):
        fault_details = [fault_details]
    if fault_details:
        code = (fault_details[0].get("PrimaryErrorCode") or {}).get("Code")
        if code:
            return str(code)

    return None


def _mask_for_logging(payload: Any) -> Any:
    """Replace credential-bearing values before a payload reaches the log."""
    if isinstance(payload, dict):
        return {
            k: "***" if k.lower() in _SENSITIVE_KEYS else _mask_for_logging(v)
            for k, v in payload.items()
        }
    if isinstance(payload, list):
        return [_mask_for_logging(v) for v in payload]
    return payload


class UPSClient:
    """
    UPS API Client with OAuth 2.0 authentication.

    The OAuth token lives in an injected TokenCache so that it can be
    shared process-wide (default) or across workers (Redis).
    """

    def __init__(
        self,
        credentials: UPSCredentials,
        token_cache: Optional[TokenCache] = None,
        timeout: float = 45.0,
        transaction_source: str = "wwe-shipping",
        debug: bool = False,
    ):
        self.credentials = credentials
        self.token_cache = token_cache or default_token_cache
        self.timeout = timeout
        self.transaction_source = transaction_source
        self.debug = debug
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    # ==================== Authentication ====================

    async def authenticate(self) -> str:
        """
        Return a valid OAuth token, fetching a new one when the cache is empty.

        Raises:
            MissingCredentialsError: client id or secret not configured
            AuthFailedError: token endpoint rejected the credentials
        """
        if not self.credentials.is_complete:
            raise MissingCredentialsError("UPS client id/secret are not configured")

        cached = await self.token_cache.get()
        if cached:
            return cached

        client = await self._get_http_client()
        url = f"{self.credentials.base_url}{OAUTH_TOKEN_PATH}"

        auth_string = f"{self.credentials.client_id}:{self.credentials.client_secret}"
        auth_header = base64.b64encode(auth_string.encode()).decode()

        try:
            response = await client.post(
                url,
                headers={
                    "Authorization": f"Basic {auth_header}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials"},
            )
        except httpx.RequestError as e:
            logger.error(f"UPS OAuth request failed: {e}")
            raise UPSAPIError(message=f"Network error during authentication: {e}", code="NETWORK_ERROR")

        data = _safe_json(response)

        if response.status_code != 200:
            reason = "Unknown authentication error"
            if isinstance(data, dict):
                reason = data.get("error_description") or data.get("error") or reason
            logger.error(f"UPS OAuth failed: {response.status_code} - {reason}")
            raise AuthFailedError(
                message=f"Failed to authenticate with UPS: {reason}",
                status_code=response.status_code,
            )

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthFailedError(
                message="UPS token response did not contain an access token",
                status_code=response.status_code,
            )

        expires_in = data.get("expires_in")
        await self.token_cache.set(token, expires_in)
        logger.info(f"UPS OAuth token obtained, expires in {expires_in}s")
        return token

    # ==================== Transport ====================

    async def _make_request(
        self,
        method: str,
        path: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict:
        """Make authenticated API request."""
        method = method.upper()
        token = await self.authenticate()
        client = await self._get_http_client()
        url = f"{self.credentials.base_url}{path}"

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "transId": str(uuid.uuid4()),
            "transactionSrc": self.transaction_source,
        }
        if extra_headers:
            headers.update(extra_headers)

        body = data if method in BODY_METHODS else None

        if self.debug:
            logger.debug(
                f"UPS API request {method} {path} transId={headers['transId']} "
                f"body={json.dumps(_mask_for_logging(body))[:MAX_DEBUG_BODY_CHARS] if body else '-'}"
            )

        try:
            response = await client.request(method, url, headers=headers, params=params, json=body)
        except httpx.TimeoutException as e:
            logger.error(f"UPS API {method} {path} timed out: {e}")
            raise UPSAPIError(message=f"Timeout calling UPS {path}", code="TIMEOUT")
        except httpx.RequestError as e:
            logger.error(f"UPS API request failed: {e}")
            raise UPSAPIError(message=f"Network error: {e}", code="NETWORK_ERROR")

        logger.debug(f"UPS API {method} {path} -> {response.status_code}")
        if self.debug:
            logger.debug(f"UPS API response body: {response.text[:MAX_DEBUG_BODY_CHARS]}")

        payload = _safe_json(response)

        if response.status_code >= 400:
            if response.status_code == 401:
                # Token revoked early; force a refresh on the next call
                await self.token_cache.clear()

            error_msg = extract_error_message(payload, response.text)
            error_code = extract_error_code(payload) or str(response.status_code)
            logger.error(f"UPS API error ({path}): {response.status_code} - {error_msg}")
            raise UPSAPIError(
                message=error_msg,
                code=error_code,
                status_code=response.status_code,
                details={"body": response.text[:MAX_ERROR_BODY_CHARS]},
            )

        if payload is None:
            raise UPSAPIError(
                message=f"UPS returned a non-JSON response for {path}",
                code="INVALID_RESPONSE",
                status_code=response.status_code,
                details={"body": response.text[:MAX_ERROR_BODY_CHARS]},
            )

        return payload

    # ==================== Rating ====================

    async def rate(self, request_body: Dict) -> Dict:
        """POST a RateRequest and return the decoded RateResponse document."""
        return await self._make_request("POST", RATING_PATH, data=request_body)

    # ==================== Shipping ====================

    async def create_shipment(self, request_body: Dict) -> Dict:
        """POST a ShipmentRequest and return the decoded ShipmentResponse document."""
        return await self._make_request("POST", SHIPPING_PATH, data=request_body)

    async def void_shipment(self, identifier: str) -> VoidResult:
        """
        Void a shipment (before pickup).

        A shipment the carrier already voided is reported as ALREADY_VOIDED
        rather than an error, so repeated voids are idempotent.

        Raises:
            UPSAPIError: any other carrier failure
        """
        identifier = str(identifier).strip()
        try:
            response = await self._make_request("DELETE", f"{VOID_PATH}/{identifier}")
        except UPSAPIError as e:
            if _is_already_voided(e.code, e.message):
                logger.info(f"UPS void {identifier}: already voided ({e.code})")
                return VoidResult(
                    identifier=identifier,
                    status=VoidStatus.ALREADY_VOIDED,
                    message=e.message,
                    code=e.code,
                )
            raise

        # Some gateways report the already-voided fault inside a 200 body
        body_code = extract_error_code(response)
        if _is_already_voided(body_code, extract_error_message(response)):
            return VoidResult(
                identifier=identifier,
                status=VoidStatus.ALREADY_VOIDED,
                code=body_code,
            )

        void_response = response.get("VoidShipmentResponse", {})
        response_status = (void_response.get("Response") or {}).get("ResponseStatus") or {}
        summary_status = (void_response.get("SummaryResult") or {}).get("Status") or {}

        if response_status.get("Code") == "1" and summary_status.get("Code") == "1":
            logger.info(f"UPS void {identifier}: voided")
            return VoidResult(
                identifier=identifier,
                status=VoidStatus.SUCCESS,
                message=summary_status.get("Description", "Voided"),
            )

        raise UPSAPIError(
            message=f"UPS did not confirm void of {identifier}",
            code="VOID_NOT_CONFIRMED",
            details={"response": response},
        )

    # ==================== Address Validation ====================

    async def validate_address(self, address: Address) -> AddressValidationResult:
        """
        Validate an address using UPS Address Validation API.

        Returns:
            AddressValidationResult with the best candidate when UPS has one
        """
        address_lines = [line for line in (address.address_1, address.address_2) if line]
        request_data = {
            "XAVRequest": {
                "AddressKeyFormat": {
                    "ConsigneeName": address.full_name[:35],
                    "AddressLine": address_lines,
                    "PoliticalDivision2": address.city,
                    "PoliticalDivision1": address.state,
                    "PostcodePrimaryLow": address.postcode,
                    "CountryCode": address.country,
                }
            }
        }

        response = await self._make_request(
            "POST",
            ADDRESS_VALIDATION_PATH,
            data=request_data,
            params={"regionalrequestindicator": "true", "maximumcandidatelistsize": "1"},
        )

        xav_response = response.get("XAVResponse", {})
        messages = []

        if xav_response.get("NoCandidatesIndicator") is not None:
            messages.append("No valid address found for the provided information")
            return AddressValidationResult(valid=False, messages=messages, raw_response=response)

        candidates = xav_response.get("Candidate", [])
        if isinstance(candidates, dict):
            candidates = [candidates]

        candidate = None
        if candidates:
            addr_key = candidates[0].get("AddressKeyFormat", {})
            lines = addr_key.get("AddressLine") or []
            if isinstance(lines, str):
                lines = [lines]
            candidate = Address(
                first_name=address.first_name,
                last_name=address.last_name,
                company=address.company,
                address_1=lines[0] if lines else address.address_1,
                address_2=lines[1] if len(lines) > 1 else address.address_2,
                city=addr_key.get("PoliticalDivision2", address.city),
                state=addr_key.get("PoliticalDivision1", address.state),
                postcode=addr_key.get("PostcodePrimaryLow", address.postcode),
                country=addr_key.get("CountryCode", address.country),
                phone=address.phone,
                email=address.email,
            )

        valid = xav_response.get("ValidAddressIndicator") is not None
        if xav_response.get("AmbiguousAddressIndicator") is not None:
            messages.append("Multiple addresses match - please verify")
        if valid:
            messages.append("Address validated")

        return AddressValidationResult(
            valid=valid,
            candidate=candidate,
            messages=messages,
            raw_response=response,
        )

    # ==================== Paperless Documents ====================

    async def upload_customs_document(self, invoice_text: str, file_name: Optional[str] = None) -> str:
        """
        Upload a plain-text commercial invoice.

        Returns:
            The Forms History DocumentID

        Raises:
            CustomsSubmissionError: no DocumentID in the response
            UPSAPIError: carrier rejected the upload
        """
        file_name = file_name or f"commercial_invoice_{int(datetime.now(timezone.utc).timestamp())}.txt"
        payload = {
            "UploadRequest": {
                "Request": {
                    "TransactionReference": {"CustomerContext": "Customs invoice upload"}
                },
                "UserCreatedForm": {
                    "UserCreatedFormFileName": file_name,
                    "UserCreatedFormFile": base64.b64encode(invoice_text.encode("utf-8")).decode(),
                    "UserCreatedFormFileFormat": "txt",
                    "UserCreatedFormDocumentType": COMMERCIAL_INVOICE_DOCUMENT_TYPE,
                },
            }
        }

        response = await self._make_request(
            "POST",
            PAPERLESS_UPLOAD_PATH,
            data=payload,
            extra_headers={"ShipperNumber": self.credentials.account_number},
        )

        document_id = (
            (response.get("UploadResponse") or {}).get("FormsHistoryDocumentID") or {}
        ).get("DocumentID")
        if isinstance(document_id, list):
            document_id = document_id[0] if document_id else None

        if not document_id:
            raise CustomsSubmissionError(
                "Document upload failed - no DocumentID returned",
                step="upload",
                details={"response": response},
            )

        logger.info(f"Commercial invoice uploaded - DocumentID {document_id}")
        return str(document_id)

    async def link_document_to_tracking(
        self,
        document_id: str,
        tracking_number: str,
        shipment_time: Optional[datetime] = None,
    ) -> Dict:
        """
        Push an uploaded document to the image repository for a shipment.

        Raises:
            CustomsSubmissionError: response lacks PushToImageRepositoryResponse
            UPSAPIError: carrier rejected the link
        """
        shipment_time = shipment_time or datetime.now(timezone.utc)
        payload = {
            "PushToImageRepositoryRequest": {
                "Request": {
                    "TransactionReference": {"CustomerContext": "Customs invoice link"}
                },
                "FormsHistoryDocumentID": {"DocumentID": [document_id]},
                "ShipmentIdentifier": tracking_number,
                "ShipmentDateAndTime": shipment_time.strftime(PAPERLESS_DATETIME_FORMAT),
                "ShipmentType": "1",  # Small package
                "TrackingNumber": [tracking_number],
            }
        }

        response = await self._make_request(
            "POST",
            PAPERLESS_IMAGE_PATH,
            data=payload,
            extra_headers={"ShipperNumber": self.credentials.account_number},
        )

        if "PushToImageRepositoryResponse" not in response:
            raise CustomsSubmissionError(
                "Document link failed - unexpected response format",
                step="link",
                details={"response": response},
            )

        logger.info(f"Document {document_id} linked to tracking {tracking_number}")
        return response


def _safe_json(response: httpx.Response) -> Optional[Any]:
    try:
        return response.json()
    except ValueError:
        return None


def _is_already_voided(code: Optional[str], message: Optional[str]) -> bool:
    if code and code in ALREADY_VOIDED_CODES:
        return True
    return bool(message) and "already been voided" in message.lower()


def create_ups_client_from_settings(token_cache: Optional[TokenCache] = None) -> UPSClient:
    """Create a UPSClient from application settings."""
    return UPSClient(
        credentials=UPSCredentials.from_settings(),
        token_cache=token_cache,
        timeout=settings.UPS_API_TIMEOUT_SECONDS,
        transaction_source=settings.UPS_TRANSACTION_SOURCE,
        debug=settings.UPS_DEBUG_LOGGING,
    )
