"""
Shipping engine models
"""
from wwe_shipping.models.order import Address, LineItem, Order
from wwe_shipping.models.shipment import (
    LabelResult,
    LabelState,
    PackageDescriptor,
    RateQuote,
    ShipmentRecord,
    VoidBatchResult,
    VoidResult,
    VoidStatus,
)
from wwe_shipping.models.customs import CustomsStatus, CustomsSubmission
from wwe_shipping.models.registration import PreLabelRegistration

__all__ = [
    "Address",
    "LineItem",
    "Order",
    "LabelResult",
    "LabelState",
    "PackageDescriptor",
    "RateQuote",
    "ShipmentRecord",
    "VoidBatchResult",
    "VoidResult",
    "VoidStatus",
    "CustomsStatus",
    "CustomsSubmission",
    "PreLabelRegistration",
]
