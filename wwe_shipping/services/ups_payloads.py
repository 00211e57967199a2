"""
UPS request payload builders

Shared by the rate engine and the shipment orchestrator so that quotes and
labels describe the same shipper, recipient and packages.
"""
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from wwe_shipping.core.config import settings
from wwe_shipping.core.exceptions import AddressIncompleteError, MissingCredentialsError
from wwe_shipping.models.order import Order
from wwe_shipping.models.shipment import PackageDescriptor

# UPS field limits
NAME_MAX = 35
ADDRESS_LINE_MAX = 35
CITY_MAX = 30
POSTAL_CODE_MAX = 10
STATE_MAX = 5
PHONE_MAX = 15
EMAIL_MAX = 50
PRODUCT_DESCRIPTION_MAX = 35
HTS_CODE_MAX = 15

INVOICE_FORM_TYPE = "01"
REASON_FOR_EXPORT = "SALE"
TERMS_OF_SHIPMENT = "DAP"
PICKUP_TYPE_DAILY = "01"
CUSTOMER_CLASSIFICATION_RATES = "00"
BILL_SHIPPER = "01"
MERCHANDISE_DESCRIPTION_COUNTRIES = {"MX": "Merchandise"}


@dataclass
class ShipperProfile:
    """Shipper identity printed on labels and invoices."""
    name: str
    account_number: str
    attention_name: str = ""
    phone: str = ""
    email: str = ""
    address_line1: str = ""
    address_line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "FR"
    tax_id: str = ""

    @classmethod
    def from_settings(cls) -> "ShipperProfile":
        return cls(
            name=settings.SHIPPER_NAME or settings.APP_NAME,
            account_number=settings.UPS_ACCOUNT_NUMBER,
            attention_name=settings.SHIPPER_ATTENTION_NAME,
            phone=settings.SHIPPER_PHONE,
            email=settings.SHIPPER_EMAIL,
            address_line1=settings.SHIPPER_ADDRESS_LINE1,
            address_line2=settings.SHIPPER_ADDRESS_LINE2,
            city=settings.SHIPPER_CITY,
            state=settings.SHIPPER_STATE,
            postal_code=settings.SHIPPER_POSTAL_CODE,
            country=settings.SHIPPER_COUNTRY,
            tax_id=settings.SHIPPER_TAX_ID,
        )

    def to_ups_format(self) -> Dict[str, Any]:
        """Convert to UPS Shipper format."""
        if not self.account_number:
            raise MissingCredentialsError("UPS account number is not configured")

        shipper = {
            "Name": self.name[:NAME_MAX],
            "AttentionName": (self.attention_name or self.name)[:NAME_MAX],
            "ShipperNumber": self.account_number,
            "Address": {
                "AddressLine": [
                    line[:ADDRESS_LINE_MAX]
                    for line in (self.address_line1, self.address_line2) if line
                ],
                "City": self.city[:CITY_MAX],
                "PostalCode": self.postal_code[:POSTAL_CODE_MAX],
                "CountryCode": self.country,
            },
        }
        if self.state:
            shipper["Address"]["StateProvinceCode"] = self.state[:STATE_MAX]
        if self.phone:
            shipper["Phone"] = {"Number": clean_phone(self.phone)}
        if self.email:
            shipper["EMailAddress"] = self.email[:EMAIL_MAX]
        if self.tax_id:
            shipper["TaxIdentificationNumber"] = self.tax_id
        return shipper

    def ship_from(self) -> Dict[str, Any]:
        shipper = self.to_ups_format()
        return {
            "Name": shipper["Name"],
            "AttentionName": shipper["AttentionName"],
            "Address": shipper["Address"],
        }


def clean_phone(phone: str) -> str:
    """Digits only, within the UPS length limit."""
    return re.sub(r"[^0-9]", "", phone or "")[:PHONE_MAX]


def build_ship_to(order: Order) -> Dict[str, Any]:
    """
    Build the UPS ShipTo block.

    Raises:
        AddressIncompleteError: country, city or (where required) postcode missing
    """
    address = order.shipping_address
    missing = address.missing_fields()
    if missing:
        raise AddressIncompleteError(
            f"Order {order.number} shipping address is missing: {', '.join(missing)}",
            missing_fields=missing,
        )

    name = (address.full_name or "Customer")[:NAME_MAX]
    ship_to = {
        "Name": name,
        "AttentionName": name,
        "Address": {
            "AddressLine": [
                line[:ADDRESS_LINE_MAX]
                for line in (address.address_1, address.address_2) if line
            ],
            "City": address.city[:CITY_MAX],
            "PostalCode": (address.postcode or "")[:POSTAL_CODE_MAX],
            "CountryCode": address.country.strip().upper(),
        },
    }
    if address.company:
        ship_to["CompanyName"] = address.company[:NAME_MAX]
    if address.state:
        ship_to["Address"]["StateProvinceCode"] = address.state[:STATE_MAX]

    phone = clean_phone(address.phone or order.billing_phone)
    if phone:
        ship_to["Phone"] = {"Number": phone}
    email = address.email or order.billing_email
    if email:
        ship_to["EMailAddress"] = email[:EMAIL_MAX]
    return ship_to


def normalize_payment_information(shipment: Dict[str, Any], account_number: str) -> Dict[str, Any]:
    """
    Normalize the billing block of a Rate/Ship Shipment in place.

    Accepts the legacy PaymentDetails key, flattens a list of charges to
    its first entry, and defaults to billing the shipper account.
    """
    if "PaymentDetails" in shipment and "PaymentInformation" not in shipment:
        shipment["PaymentInformation"] = shipment.pop("PaymentDetails")

    payment = shipment.setdefault("PaymentInformation", {})
    charge = payment.get("ShipmentCharge")
    if isinstance(charge, list) and charge:
        payment["ShipmentCharge"] = charge[0]
    elif not charge:
        payment["ShipmentCharge"] = {
            "Type": BILL_SHIPPER,
            "BillShipper": {"AccountNumber": account_number},
        }
    return shipment


def invoice_line_total(order: Order) -> Dict[str, str]:
    """Declared contents value; UPS rejects non-positive totals so those become 1.00."""
    total = float(order.total or 0)
    if total <= 0:
        total = 1.00
    return {"CurrencyCode": order.currency, "MonetaryValue": f"{total:.2f}"}


def build_rate_request(
    order: Order,
    packages: List[PackageDescriptor],
    shipper: ShipperProfile,
    service_code: str = "17",
) -> Dict[str, Any]:
    """Build a negotiated-rate RateRequest for all packages in one shipment."""
    shipment = {
        "Shipper": shipper.to_ups_format(),
        "ShipTo": build_ship_to(order),
        "ShipFrom": shipper.ship_from(),
        "PickupType": {"Code": PICKUP_TYPE_DAILY},
        "CustomerClassification": {"Code": CUSTOMER_CLASSIFICATION_RATES},
        "Service": {"Code": service_code},
        "Package": [package.to_ups_format() for package in packages],
        "InvoiceLineTotal": invoice_line_total(order),
        "ShipmentRatingOptions": {"NegotiatedRatesIndicator": "1"},
    }
    normalize_payment_information(shipment, shipper.account_number)
    return {
        "RateRequest": {
            "Request": {
                "RequestOption": "Rate",
                "TransactionReference": {"CustomerContext": f"Rate order {order.number}"},
            },
            "Shipment": shipment,
        }
    }


def build_customs_products(order: Order, default_origin: str = "FR") -> List[Dict[str, Any]]:
    """InternationalForms Product entries for every shippable line."""
    products = []
    for item in order.shippable_items():
        product = {
            "Description": (item.name or item.product_ref or "Item")[:PRODUCT_DESCRIPTION_MAX],
            "Unit": {
                "Number": str(int(item.quantity)),
                "Value": f"{float(item.unit_value or 0):.2f}",
                "UnitOfMeasurement": {"Code": "PCS"},
            },
            "OriginCountryCode": (item.country_of_origin or default_origin).upper(),
            "PartNumber": item.product_ref,
        }
        hs_code = re.sub(r"[^0-9]", "", item.hs_code or "")[:HTS_CODE_MAX]
        if hs_code:
            product["CommodityCode"] = hs_code
        if item.weight not in (None, ""):
            product["ProductWeight"] = {
                "UnitOfMeasurement": {"Code": "KGS"},
                "Weight": f"{float(item.weight) * int(item.quantity):.2f}",
            }
        products.append(product)
    return products


def build_international_forms(
    order: Order,
    default_origin: str = "FR",
    invoice_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Commercial invoice form shared by every package of the order."""
    invoice_date = invoice_date or datetime.now(timezone.utc)
    forms = {
        "FormType": INVOICE_FORM_TYPE,
        "InvoiceNumber": str(order.id),
        "InvoiceDate": invoice_date.strftime("%Y%m%d"),
        "ReasonForExport": REASON_FOR_EXPORT,
        "TermsOfShipment": TERMS_OF_SHIPMENT,
        "CurrencyCode": order.currency,
        "Product": build_customs_products(order, default_origin),
        "InvoiceLineTotal": invoice_line_total(order),
    }
    merchandise = MERCHANDISE_DESCRIPTION_COUNTRIES.get(order.destination_country)
    if merchandise:
        forms["MerchandiseDescription"] = merchandise
    return forms


def build_shipment_request(
    order: Order,
    package: PackageDescriptor,
    shipper: ShipperProfile,
    ship_to: Dict[str, Any],
    international_forms: Dict[str, Any],
    package_index: int,
    service_code: str = "17",
    label_format: str = "GIF",
) -> Dict[str, Any]:
    """
    Build a ShipmentRequest for a single package.

    Shipper, recipient and customs forms are shared across the packages of
    an order; only the Package entry differs.
    """
    package_payload = package.to_ups_format()
    # Shipping API calls it Packaging, Rating calls it PackagingType
    package_payload["Packaging"] = package_payload.pop("PackagingType")
    if package.reference:
        package_payload["ReferenceNumber"] = {"Value": package.reference[:NAME_MAX]}

    shipment = {
        "Description": f"Order {order.number}"[:NAME_MAX],
        "Shipper": shipper.to_ups_format(),
        "ShipTo": ship_to,
        "ShipFrom": shipper.ship_from(),
        "Service": {"Code": service_code},
        "Package": [package_payload],
        "InternationalForms": international_forms,
        "PickupType": {"Code": PICKUP_TYPE_DAILY},
        "CustomerClassification": {"Code": CUSTOMER_CLASSIFICATION_RATES},
    }
    normalize_payment_information(shipment, shipper.account_number)

    return {
        "ShipmentRequest": {
            "Request": {
                "RequestOption": "nonvalidate",
                "TransactionReference": {
                    "CustomerContext": f"Label order {order.number} package {package_index}"
                },
            },
            "Shipment": shipment,
            "LabelSpecification": {
                "LabelImageFormat": {"Code": label_format.upper()},
                "LabelStockSize": {"Height": "6", "Width": "4"},
            },
        }
    }
