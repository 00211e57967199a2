"""
WWE Shipping Exception Hierarchy

Structured exception classes for the shipment orchestration engine.
All exceptions include code, message, and details for the order note
trail and debugging.

Exception Hierarchy:
    ShippingEngineError
    ├── ConfigError
    │   └── MissingCredentialsError
    ├── ShippingValidationError
    │   ├── NoShippableItemsError
    │   ├── MissingWeightError
    │   ├── InvalidWeightError
    │   ├── TooManyPackagesError
    │   ├── AddressIncompleteError
    │   ├── AlreadyLabeledError
    │   └── NoShipmentError
    ├── OrderBusyError
    └── ProviderError
        ├── UPSAPIError
        │   └── AuthFailedError
        ├── NoRateFromProviderError
        ├── CurrencyMismatchError
        ├── LabelGenerationError
        ├── CustomsSubmissionError
        └── IParcelError

A partially successful void batch is not an exception; see VoidBatchResult.
"""
import logging
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


class ShippingEngineError(Exception):
    """
    Base exception for all shipping engine errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "SHIPPING_ENGINE_ERROR"
    default_severity: str = "P2"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# CONFIGURATION ERRORS (fatal, never retried)
# =============================================================================

class ConfigError(ShippingEngineError):
    """Missing or invalid configuration."""
    default_code = "CONFIG_ERROR"
    default_severity = "P0"


class MissingCredentialsError(ConfigError):
    """Carrier credentials are not configured."""
    default_code = "MISSING_CREDENTIALS"


# =============================================================================
# VALIDATION ERRORS (surfaced to caller, never retried)
# =============================================================================

class ShippingValidationError(ShippingEngineError):
    """Order data cannot be shipped as-is."""
    default_code = "VALIDATION_ERROR"
    default_severity = "P3"


class NoShippableItemsError(ShippingValidationError):
    """Order has no line items that need shipping."""
    default_code = "NO_SHIPPABLE_ITEMS"


class MissingWeightError(ShippingValidationError):
    """A shippable line item has no weight."""
    default_code = "MISSING_WEIGHT"

    def __init__(self, message: str, product_ref: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["product_ref"] = product_ref
        super().__init__(message, details=details, **kwargs)


class InvalidWeightError(ShippingValidationError):
    """A weight is not a positive number."""
    default_code = "INVALID_WEIGHT"

    def __init__(
        self,
        message: str,
        product_ref: Optional[str] = None,
        weight: Any = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "product_ref": product_ref,
            "weight": weight,
        })
        super().__init__(message, details=details, **kwargs)


class TooManyPackagesError(ShippingValidationError):
    """Split would exceed the maximum package count."""
    default_code = "TOO_MANY_PACKAGES"

    def __init__(
        self,
        message: str,
        package_count: Optional[int] = None,
        max_packages: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "package_count": package_count,
            "max_packages": max_packages,
        })
        super().__init__(message, details=details, **kwargs)


class AddressIncompleteError(ShippingValidationError):
    """Destination address is missing required fields."""
    default_code = "ADDRESS_INCOMPLETE"

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["missing_fields"] = missing_fields or []
        super().__init__(message, details=details, **kwargs)


class AlreadyLabeledError(ShippingValidationError):
    """Order already has a shipment record."""
    default_code = "ALREADY_LABELED"


class NoShipmentError(ShippingValidationError):
    """Order has no shipment identifiers to act on."""
    default_code = "NO_SHIPMENT"


# =============================================================================
# CONCURRENCY ERRORS
# =============================================================================

class OrderBusyError(ShippingEngineError):
    """Another process holds the order lock past the wait limit."""
    default_code = "ORDER_BUSY"
    retryable = True

    def __init__(self, message: str, order_id: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["order_id"] = order_id
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# PROVIDER ERRORS (carrier returned non-2xx or unusable data)
# =============================================================================

class ProviderError(ShippingEngineError):
    """Base exception for remote provider failures."""
    default_code = "PROVIDER_ERROR"
    default_severity = "P1"
    retryable = True


class UPSAPIError(ProviderError):
    """UPS API error carrying the carrier's own code when parseable."""
    default_code = "UPS_API_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        details = dict(details or {})
        if status_code is not None:
            details["status_code"] = status_code
        self.status_code = status_code
        super().__init__(message, code=code, details=details, **kwargs)


class AuthFailedError(UPSAPIError):
    """OAuth token request was rejected."""
    default_code = "AUTH_FAILED"
    default_severity = "P0"


class NoRateFromProviderError(ProviderError):
    """Rate response carried neither a negotiated nor a standard rate."""
    default_code = "NO_RATE_FROM_PROVIDER"


class CurrencyMismatchError(ProviderError):
    """Provider quoted in a different currency than the order."""
    default_code = "CURRENCY_MISMATCH"
    retryable = False

    def __init__(
        self,
        message: str,
        order_currency: Optional[str] = None,
        provider_currency: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "order_currency": order_currency,
            "provider_currency": provider_currency,
        })
        super().__init__(message, details=details, **kwargs)


class LabelGenerationError(ProviderError):
    """One package failed to label, so the whole labeling failed."""
    default_code = "LABEL_GENERATION_FAILED"

    def __init__(
        self,
        message: str,
        package_index: Optional[int] = None,
        orphaned_shipment_ids: Optional[List[str]] = None,
        compensated: bool = False,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "package_index": package_index,
            "orphaned_shipment_ids": orphaned_shipment_ids or [],
            "compensated": compensated,
        })
        self.orphaned_shipment_ids = orphaned_shipment_ids or []
        super().__init__(message, details=details, **kwargs)


class CustomsSubmissionError(ProviderError):
    """Commercial invoice upload or link failed."""
    default_code = "CUSTOMS_SUBMISSION_FAILED"

    def __init__(self, message: str, step: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["step"] = step
        self.step = step
        super().__init__(message, details=details, **kwargs)


class IParcelError(ProviderError):
    """i-Parcel parcel registration failed."""
    default_code = "IPARCEL_ERROR"
    default_severity = "P2"


# =============================================================================
# EXCEPTION CATALOG
# =============================================================================

EXCEPTION_CATALOG = {
    "CONFIG_ERROR": ConfigError,
    "MISSING_CREDENTIALS": MissingCredentialsError,
    "VALIDATION_ERROR": ShippingValidationError,
    "NO_SHIPPABLE_ITEMS": NoShippableItemsError,
    "MISSING_WEIGHT": MissingWeightError,
    "INVALID_WEIGHT": InvalidWeightError,
    "TOO_MANY_PACKAGES": TooManyPackagesError,
    "ADDRESS_INCOMPLETE": AddressIncompleteError,
    "ALREADY_LABELED": AlreadyLabeledError,
    "NO_SHIPMENT": NoShipmentError,
    "ORDER_BUSY": OrderBusyError,
    "PROVIDER_ERROR": ProviderError,
    "UPS_API_ERROR": UPSAPIError,
    "AUTH_FAILED": AuthFailedError,
    "NO_RATE_FROM_PROVIDER": NoRateFromProviderError,
    "CURRENCY_MISMATCH": CurrencyMismatchError,
    "LABEL_GENERATION_FAILED": LabelGenerationError,
    "CUSTOMS_SUBMISSION_FAILED": CustomsSubmissionError,
    "IPARCEL_ERROR": IParcelError,
}


def get_exception_class(code: str) -> type:
    """Get exception class by error code."""
    return EXCEPTION_CATALOG.get(code, ShippingEngineError)
