"""
Commercial invoice

Builds the plain-text commercial invoice uploaded to UPS Paperless
Documents for each international shipment.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from wwe_shipping.core.exceptions import CustomsSubmissionError
from wwe_shipping.models.order import Order
from wwe_shipping.services.ups_payloads import ShipperProfile

DEFAULT_ITEM_WEIGHT_KG = 0.25
TERMS_OF_SALE = "DDU"
REASON_FOR_EXPORT = "SALE"

NOT_AVAILABLE = "N/A"


@dataclass
class InvoiceParty:
    company: str
    address_line1: str
    city: str
    postal_code: str
    country: str
    phone: str = ""
    email: str = ""
    contact: str = ""
    address_line2: str = ""
    state: str = ""


@dataclass
class InvoiceItem:
    description: str
    sku: str
    quantity: int
    unit_value: float
    currency: str
    hts_code: str
    country_of_origin: str
    weight_kg: float

    @property
    def total_value(self) -> float:
        return round(self.unit_value * self.quantity, 2)


@dataclass
class CommercialInvoice:
    invoice_number: str
    invoice_date: datetime
    currency: str
    shipper: InvoiceParty
    consignee: InvoiceParty
    items: List[InvoiceItem] = field(default_factory=list)
    reason_for_export: str = REASON_FOR_EXPORT
    terms: str = TERMS_OF_SALE

    @property
    def total_value(self) -> float:
        return round(sum(item.total_value for item in self.items), 2)

    def render_text(self) -> str:
        """Render the invoice as the TXT document UPS accepts."""
        lines = [
            "COMMERCIAL INVOICE",
            "==================",
            "",
            f"Invoice Number: {self.invoice_number}",
            f"Invoice Date: {self.invoice_date.strftime('%Y-%m-%d')}",
            f"Currency: {self.currency}",
            f"Reason for Export: {self.reason_for_export}",
            f"Terms: {self.terms}",
            "",
            "SHIPPER INFORMATION:",
            f"Company: {_or_na(self.shipper.company)}",
            f"Address: {_or_na(self.shipper.address_line1)}",
            f"City: {_or_na(self.shipper.city)}",
            f"Postal Code: {_or_na(self.shipper.postal_code)}",
            f"Country: {_or_na(self.shipper.country)}",
            f"Phone: {_or_na(self.shipper.phone)}",
            f"Email: {_or_na(self.shipper.email)}",
            "",
            "CONSIGNEE INFORMATION:",
            f"Company: {_or_na(self.consignee.company)}",
            f"Contact: {_or_na(self.consignee.contact)}",
            f"Address: {_or_na(self.consignee.address_line1)}",
        ]
        if self.consignee.address_line2:
            lines.append(f"Address 2: {self.consignee.address_line2}")
        lines.extend([
            f"City: {_or_na(self.consignee.city)}",
            f"State: {_or_na(self.consignee.state)}",
            f"Postal Code: {_or_na(self.consignee.postal_code)}",
            f"Country: {_or_na(self.consignee.country)}",
            f"Phone: {_or_na(self.consignee.phone)}",
            f"Email: {_or_na(self.consignee.email)}",
            "",
            "ITEMS:",
            "------",
        ])

        for index, item in enumerate(self.items, start=1):
            lines.extend([
                f"{index}. {_or_na(item.description)}",
                f"   SKU: {_or_na(item.sku)}",
                f"   Quantity: {item.quantity}",
                f"   Unit Value: {item.unit_value:.2f} {item.currency}",
                f"   Total Value: {item.total_value:.2f} {item.currency}",
                f"   HTS Code: {_or_na(item.hts_code)}",
                f"   Country of Origin: {_or_na(item.country_of_origin)}",
                f"   Weight: {item.weight_kg:g} KG",
                "",
            ])

        lines.append(f"TOTAL VALUE: {self.total_value:.2f} {self.currency}")
        lines.append("")
        lines.append("--- End of Commercial Invoice ---")
        return "\n".join(lines) + "\n"


def _or_na(value: Optional[str]) -> str:
    return value if value else NOT_AVAILABLE


def build_commercial_invoice(
    order: Order,
    shipper: ShipperProfile,
    issued_at: datetime,
    default_origin: str = "FR",
) -> CommercialInvoice:
    """
    Assemble invoice data from the order and the shipper profile.

    Raises:
        CustomsSubmissionError: order has nothing to declare
    """
    items = []
    for line in order.shippable_items():
        try:
            weight = float(line.weight) if line.weight not in (None, "") else DEFAULT_ITEM_WEIGHT_KG
        except (TypeError, ValueError):
            weight = DEFAULT_ITEM_WEIGHT_KG
        items.append(InvoiceItem(
            description=line.name,
            sku=line.product_ref,
            quantity=int(line.quantity),
            unit_value=round(float(line.unit_value or 0), 2),
            currency=order.currency,
            hts_code=line.hs_code,
            country_of_origin=(line.country_of_origin or default_origin).upper(),
            weight_kg=weight,
        ))

    if not items:
        raise CustomsSubmissionError(
            f"Order {order.number} has no items to declare",
            step="invoice",
        )

    address = order.shipping_address
    consignee = InvoiceParty(
        company=address.company or address.full_name,
        contact=address.full_name,
        address_line1=address.address_1,
        address_line2=address.address_2,
        city=address.city,
        state=address.state,
        postal_code=address.postcode,
        country=order.destination_country,
        phone=order.billing_phone or address.phone,
        email=order.billing_email or address.email,
    )
    shipper_party = InvoiceParty(
        company=shipper.name,
        address_line1=shipper.address_line1,
        city=shipper.city,
        postal_code=shipper.postal_code,
        country=shipper.country,
        phone=shipper.phone,
        email=shipper.email,
    )

    return CommercialInvoice(
        invoice_number=f"INV-{order.id}-{int(issued_at.timestamp())}",
        invoice_date=issued_at,
        currency=order.currency,
        shipper=shipper_party,
        consignee=consignee,
        items=items,
    )
