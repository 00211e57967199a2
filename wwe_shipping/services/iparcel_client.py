"""
i-Parcel API Client

Registers parcel contents with i-Parcel (SubmitParcel) ahead of UPS label
generation so the carrier has item-level data for the customs declaration.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from wwe_shipping.core.config import settings
from wwe_shipping.core.exceptions import IParcelError, MissingCredentialsError
from wwe_shipping.models.order import Order, TAX_ID_COUNTRIES

logger = logging.getLogger(__name__)

SUBMIT_PARCEL_PATH = "/SubmitParcel"
IPARCEL_TIMEOUT_SECONDS = 30.0

KG_TO_LBS = 2.20462

# Used when the product has no weight or dimensions
DEFAULT_ITEM_WEIGHT_LBS = 0.55
DEFAULT_ITEM_LENGTH_INCHES = 12.6
DEFAULT_ITEM_WIDTH_INCHES = 12.6
DEFAULT_ITEM_HEIGHT_INCHES = 0.12

PRE_LABEL_TRACKING_PREFIX = "PRE_LABEL_"


@dataclass
class IParcelCredentials:
    private_key: str
    public_key: str = ""
    company_id: str = ""
    base_url: str = "https://webservices.i-parcel.com/api"

    @classmethod
    def from_settings(cls) -> "IParcelCredentials":
        return cls(
            private_key=settings.IPARCEL_PRIVATE_KEY,
            public_key=settings.IPARCEL_PUBLIC_KEY,
            company_id=settings.IPARCEL_COMPANY_ID,
            base_url=settings.IPARCEL_BASE_URL,
        )


def build_item_details(order: Order, default_origin: str = "FR") -> List[Dict[str, Any]]:
    """ItemDetailsList entries in i-Parcel units (lbs, inches)."""
    items = []
    for item in order.shippable_items():
        try:
            weight_lbs = float(item.weight) * KG_TO_LBS if item.weight not in (None, "") else 0.0
        except (TypeError, ValueError):
            weight_lbs = 0.0
        if weight_lbs <= 0:
            weight_lbs = DEFAULT_ITEM_WEIGHT_LBS

        value = round(float(item.unit_value or 0), 2)
        items.append({
            "SKU": item.product_ref,
            "Quantity": max(1, int(item.quantity)),
            "ProductDescription": item.name,
            "CountryOfOrigin": (item.country_of_origin or default_origin).upper(),
            "HTSCode": item.hs_code,
            "CustWeightLbs": round(weight_lbs, 2),
            "CustLengthInches": DEFAULT_ITEM_LENGTH_INCHES,
            "CustWidthInches": DEFAULT_ITEM_WIDTH_INCHES,
            "CustHeightInches": DEFAULT_ITEM_HEIGHT_INCHES,
            "OriginalPrice": value,
            "ValueCompanyCurrency": value,
            "CompanyCurrency": order.currency,
            "ValueShopperCurrency": value,
            "ShopperCurrency": order.currency,
        })
    return items


def build_submit_parcel_payload(order: Order, private_key: str, default_origin: str = "FR") -> Dict[str, Any]:
    address = order.shipping_address
    shipping = {
        "FirstName": address.first_name,
        "LastName": address.last_name,
        "Street1": address.address_1,
        "Street2": address.address_2,
        "City": address.city,
        "Region": address.state,
        "PostCode": address.postcode,
        "CountryCode": order.destination_country,
        "Email": order.billing_email or address.email,
        "Phone": order.billing_phone or address.phone,
    }
    if order.destination_country in TAX_ID_COUNTRIES:
        shipping["ControlNumber"] = order.tax_id

    return {
        "ItemDetailsList": build_item_details(order, default_origin),
        "AddressInfo": {
            "Shipping": shipping,
            "Billing": dict(shipping),
        },
        "DDP": False,
        "TrackByEmail": True,
        "Reference": order.number,
        "TrackingNumber": f"{PRE_LABEL_TRACKING_PREFIX}{order.id}",
        "key": private_key,
    }


class IParcelClient:
    """i-Parcel SubmitParcel client."""

    def __init__(self, credentials: IParcelCredentials, timeout: float = IPARCEL_TIMEOUT_SECONDS, debug: bool = False):
        self.credentials = credentials
        self.timeout = timeout
        self.debug = debug
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self):
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Key": self.credentials.public_key or self.credentials.private_key,
        }
        if self.credentials.company_id:
            headers["Company-Id"] = self.credentials.company_id
        return headers

    async def submit_parcel(self, order: Order, default_origin: str = "FR") -> Dict[str, Any]:
        """
        Submit parcel contents for an order.

        Returns:
            Decoded response body with success true

        Raises:
            MissingCredentialsError: private key not configured
            IParcelError: transport failure, non-200, or success not true
        """
        if not self.credentials.private_key:
            raise MissingCredentialsError("i-Parcel private key not defined")

        payload = build_submit_parcel_payload(order, self.credentials.private_key, default_origin)
        url = f"{self.credentials.base_url.rstrip('/')}{SUBMIT_PARCEL_PATH}"

        if self.debug:
            masked = dict(payload, key="***")
            logger.debug(f"i-Parcel SubmitParcel payload: {json.dumps(masked)[:1000]}")

        client = await self._get_http_client()
        try:
            response = await client.post(
                url,
                params={"key": self.credentials.private_key},
                headers=self._headers(),
                json=payload,
            )
        except httpx.RequestError as e:
            logger.error(f"i-Parcel SubmitParcel request failed: {e}")
            raise IParcelError(f"i-Parcel request failed: {e}", code="NETWORK_ERROR")

        if response.status_code != 200:
            logger.error(f"i-Parcel SubmitParcel failed: HTTP {response.status_code} - {response.text[:300]}")
            raise IParcelError(
                f"Pre-Label SubmitParcel failed: HTTP {response.status_code}",
                details={"status_code": response.status_code, "body": response.text[:300]},
            )

        try:
            data = response.json()
        except ValueError:
            raise IParcelError("i-Parcel returned a non-JSON response", details={"body": response.text[:300]})

        if not isinstance(data, dict) or not data.get("success"):
            message = data.get("message") if isinstance(data, dict) else None
            raise IParcelError(message or "Unknown error", details={"response": data})

        return data


def create_iparcel_client_from_settings() -> IParcelClient:
    return IParcelClient(
        credentials=IParcelCredentials.from_settings(),
        debug=settings.UPS_DEBUG_LOGGING,
    )
