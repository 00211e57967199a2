"""
Shipment models

Typed records for packages, rate quotes, labels and voids. ShipmentRecord
is persisted as named order attributes; the translation to and from that
key-value shape happens here and nowhere else.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# UPS packaging type codes
PACKAGING_TYPES = {
    "01": "UPS Letter",
    "02": "Customer Supplied Package",
    "03": "Tube",
    "04": "PAK",
    "21": "UPS Express Box",
    "24": "UPS 25KG Box",
    "25": "UPS 10KG Box",
}

CUSTOMER_SUPPLIED_PACKAGE = "02"

# Order attribute keys
TRACKING_NUMBERS_KEY = "ups_tracking_numbers"
SHIPMENT_IDS_KEY = "ups_shipment_ids"
LABEL_COUNT_KEY = "ups_label_count"
LABEL_FORMAT_KEY = "ups_label_format"
LABELED_AT_KEY = "ups_labeled_at"
LABEL_KEY_PREFIX = "ups_label_"


def label_key(index: int) -> str:
    return f"{LABEL_KEY_PREFIX}{index}"


class LabelState(str, enum.Enum):
    """Label generation lifecycle for one order."""
    UNLABELED = "unlabeled"
    LABELING = "labeling"
    LABELED = "labeled"  # Terminal success
    LABEL_FAILED = "label_failed"  # Terminal failure, nothing persisted


@dataclass(frozen=True)
class PackageDescriptor:
    """One carrier-compliant box. Weight in weight_unit, dimensions in dimension_unit."""
    weight: float
    length: float
    width: float
    height: float
    weight_unit: str = "KGS"
    dimension_unit: str = "CM"
    packaging_code: str = CUSTOMER_SUPPLIED_PACKAGE
    size_name: str = "large"
    reference: str = ""

    @property
    def packaging_description(self) -> str:
        return PACKAGING_TYPES.get(self.packaging_code, "Customer Supplied Package")

    def to_ups_format(self) -> Dict[str, Any]:
        """Convert to a UPS Rating/Shipping Package entry."""
        package = {
            "PackagingType": {
                "Code": self.packaging_code,
                "Description": self.packaging_description,
            },
            "Dimensions": {
                "UnitOfMeasurement": {"Code": self.dimension_unit},
                "Length": _format_number(self.length),
                "Width": _format_number(self.width),
                "Height": _format_number(self.height),
            },
            "PackageWeight": {
                "UnitOfMeasurement": {"Code": self.weight_unit},
                "Weight": _format_number(self.weight),
            },
        }
        return package


def _format_number(value: float) -> str:
    """UPS wants numeric strings; drop a trailing .0 on whole numbers."""
    rounded = round(float(value), 2)
    if rounded == int(rounded):
        return str(int(rounded))
    return f"{rounded:.2f}".rstrip("0")


@dataclass
class RateQuote:
    """Quoted price for a set of packages. Ephemeral, never persisted."""
    cost: float
    currency: str
    weight: float
    package_count: int
    provider_charge: float
    handling_fee: float = 0.0
    negotiated: bool = False
    raw_response: Dict = field(default_factory=dict)


@dataclass
class ShipmentRecord:
    """
    Labels and identifiers for one labeled order.

    Each package contributes one tracking number and one base64 label,
    in package order. label_count is always len(labels).
    """
    tracking_numbers: List[str]
    labels: List[str]
    label_format: str
    shipment_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if len(self.tracking_numbers) != len(self.labels):
            raise ValueError(
                f"ShipmentRecord needs one label per tracking number "
                f"({len(self.tracking_numbers)} tracking, {len(self.labels)} labels)"
            )

    @property
    def label_count(self) -> int:
        return len(self.labels)

    @property
    def primary_tracking_number(self) -> Optional[str]:
        return self.tracking_numbers[0] if self.tracking_numbers else None

    @property
    def void_identifiers(self) -> List[str]:
        """Shipment ids when the carrier returned them, otherwise tracking numbers."""
        return list(self.shipment_ids) if self.shipment_ids else list(self.tracking_numbers)

    def to_attributes(self) -> Dict[str, Any]:
        attributes = {
            TRACKING_NUMBERS_KEY: list(self.tracking_numbers),
            SHIPMENT_IDS_KEY: list(self.shipment_ids),
            LABEL_COUNT_KEY: self.label_count,
            LABEL_FORMAT_KEY: self.label_format,
            LABELED_AT_KEY: self.created_at.isoformat(),
        }
        for index, label in enumerate(self.labels):
            attributes[label_key(index)] = label
        return attributes

    @staticmethod
    def attribute_keys(attributes: Dict[str, Any]) -> List[str]:
        """Every stored key belonging to a shipment record, labels included."""
        keys = [
            TRACKING_NUMBERS_KEY,
            SHIPMENT_IDS_KEY,
            LABEL_COUNT_KEY,
            LABEL_FORMAT_KEY,
            LABELED_AT_KEY,
        ]
        keys.extend(k for k in attributes if k.startswith(LABEL_KEY_PREFIX) and k[len(LABEL_KEY_PREFIX):].isdigit())
        return keys


def stored_tracking_numbers(attributes: Dict[str, Any]) -> List[str]:
    """Tracking numbers on an order, even when the rest of the record is damaged."""
    return _as_list(attributes.get(TRACKING_NUMBERS_KEY))


def stored_void_identifiers(attributes: Dict[str, Any]) -> List[str]:
    """Identifiers to void: shipment ids when stored, otherwise tracking numbers."""
    return _as_list(attributes.get(SHIPMENT_IDS_KEY)) or stored_tracking_numbers(attributes)


def _as_list(value: Any) -> List[str]:
    """Accept a list or a comma-separated string."""
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(v) for v in value if v]


@dataclass
class LabelResult:
    """Result of label generation."""
    order_id: int
    state: LabelState
    record: Optional[ShipmentRecord] = None
    correlation_id: Optional[str] = None
    pre_label_registered: bool = False


# ==================== Void ====================

class VoidStatus(str, enum.Enum):
    SUCCESS = "success"
    ALREADY_VOIDED = "already_voided"
    FAILED = "failed"


@dataclass
class VoidResult:
    """Outcome of voiding one identifier."""
    identifier: str
    status: VoidStatus
    message: str = ""
    code: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status in (VoidStatus.SUCCESS, VoidStatus.ALREADY_VOIDED)


@dataclass
class VoidBatchResult:
    """
    Aggregate outcome of voiding every identifier on an order.

    cleaned is True whenever at least one identifier voided, even when
    others failed.
    """
    order_id: int
    success_count: int
    errors: List[str]
    results: List[VoidResult] = field(default_factory=list)
    cleaned: bool = False
    message: str = ""

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success(self) -> bool:
        return self.success_count > 0 and not self.errors

    @property
    def partial(self) -> bool:
        return self.success_count > 0 and bool(self.errors)
