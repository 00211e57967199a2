"""
Order models

The order aggregate as seen by the shipping engine: destination address,
line items, currency and totals. Orders are owned by the storefront; this
subsystem only reads them and attaches shipment attributes through the
order store.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Countries where UPS accepts shipments without a postal code
NO_POSTCODE_COUNTRIES = frozenset({
    "AE", "AF", "AO", "AG", "AW", "BH", "BJ", "BW", "BF", "BI", "CM", "CF",
    "TD", "CG", "CD", "CI", "DJ", "DM", "GQ", "ER", "FJ", "GA", "GM", "GH",
    "GD", "GW", "GY", "HK", "KI", "KW", "LY", "MO", "MW", "ML", "MR", "MU",
    "NR", "NE", "NG", "NU", "OM", "PW", "QA", "RW", "KN", "LC", "VC", "WS",
    "ST", "SA", "SC", "SL", "SB", "SO", "SR", "TL", "TK", "TO", "TV", "UG",
    "VU", "YE", "ZM", "ZW",
})

# Destinations that require the consignee tax id on parcel registration
TAX_ID_COUNTRIES = frozenset({"BR", "IL", "KR", "RU", "ZA", "TW"})


@dataclass
class Address:
    """Postal address with contact details."""
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    address_1: str = ""
    address_2: str = ""
    city: str = ""
    state: str = ""
    postcode: str = ""
    country: str = ""
    phone: str = ""
    email: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def missing_fields(self) -> List[str]:
        """
        Check the fields UPS needs for an international label.

        Country and city are always required. Postcode is required unless
        the destination country does not use postal codes.
        """
        missing = []
        country = (self.country or "").strip().upper()
        if not country:
            missing.append("country")
        if not (self.postcode or "").strip() and country not in NO_POSTCODE_COUNTRIES:
            missing.append("postcode")
        if not (self.city or "").strip():
            missing.append("city")
        return missing

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    def to_dict(self) -> Dict[str, str]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "company": self.company,
            "address_1": self.address_1,
            "address_2": self.address_2,
            "city": self.city,
            "state": self.state,
            "postcode": self.postcode,
            "country": self.country,
            "phone": self.phone,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Address":
        data = data or {}
        return cls(**{k: str(data.get(k) or "") for k in cls.__dataclass_fields__})


@dataclass
class LineItem:
    """
    One order line.

    weight is per unit, in KGS. None means the product has no weight set.
    """
    product_ref: str
    name: str
    quantity: int
    weight: Optional[Any]
    unit_value: float = 0.0
    needs_shipping: bool = True
    hs_code: str = ""
    country_of_origin: str = ""

    @property
    def line_total(self) -> float:
        return round(float(self.unit_value) * int(self.quantity), 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_ref": self.product_ref,
            "name": self.name,
            "quantity": self.quantity,
            "weight": self.weight,
            "unit_value": self.unit_value,
            "needs_shipping": self.needs_shipping,
            "hs_code": self.hs_code,
            "country_of_origin": self.country_of_origin,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineItem":
        return cls(
            product_ref=str(data.get("product_ref", "")),
            name=str(data.get("name", "")),
            quantity=int(data.get("quantity", 0) or 0),
            weight=data.get("weight"),
            unit_value=float(data.get("unit_value", 0.0) or 0.0),
            needs_shipping=bool(data.get("needs_shipping", True)),
            hs_code=str(data.get("hs_code", "") or ""),
            country_of_origin=str(data.get("country_of_origin", "") or ""),
        )


@dataclass
class Order:
    """Shippable order aggregate."""
    id: int
    shipping_address: Address
    items: List[LineItem] = field(default_factory=list)
    currency: str = "EUR"
    total: float = 0.0
    shipping_total: float = 0.0
    order_number: Optional[str] = None
    billing_email: str = ""
    billing_phone: str = ""
    tax_id: str = ""

    @property
    def number(self) -> str:
        return self.order_number or str(self.id)

    @property
    def destination_country(self) -> str:
        return (self.shipping_address.country or "").strip().upper()

    def shippable_items(self) -> List[LineItem]:
        """Line items that need shipping and have a positive quantity."""
        return [
            item for item in self.items
            if item.needs_shipping and int(item.quantity or 0) > 0
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "shipping_address": self.shipping_address.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "currency": self.currency,
            "total": self.total,
            "shipping_total": self.shipping_total,
            "billing_email": self.billing_email,
            "billing_phone": self.billing_phone,
            "tax_id": self.tax_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        return cls(
            id=int(data["id"]),
            order_number=data.get("order_number"),
            shipping_address=Address.from_dict(data.get("shipping_address")),
            items=[LineItem.from_dict(i) for i in data.get("items", [])],
            currency=str(data.get("currency") or "EUR"),
            total=float(data.get("total", 0.0) or 0.0),
            shipping_total=float(data.get("shipping_total", 0.0) or 0.0),
            billing_email=str(data.get("billing_email", "") or ""),
            billing_phone=str(data.get("billing_phone", "") or ""),
            tax_id=str(data.get("tax_id", "") or ""),
        )
