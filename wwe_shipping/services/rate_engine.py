"""
Rate Engine

Quotes UPS Worldwide Economy for an order's packages.

Policy:
- Real carrier price or an error; no estimated or fallback rates
- Negotiated (contract) rate preferred over the published rate
- Quote currency must match the order currency
- Flat handling fee added after the carrier charge
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from wwe_shipping.core.config import settings
from wwe_shipping.core.exceptions import CurrencyMismatchError, NoRateFromProviderError
from wwe_shipping.models.order import Order
from wwe_shipping.models.shipment import PackageDescriptor, RateQuote
from wwe_shipping.services.package_planner import PackagePlanner
from wwe_shipping.services.ups_client import UPSClient
from wwe_shipping.services.ups_payloads import ShipperProfile, build_rate_request, build_ship_to

logger = logging.getLogger(__name__)


@dataclass
class RateConfig:
    service_code: str = "17"
    handling_fee: float = 1.0

    @classmethod
    def from_settings(cls) -> "RateConfig":
        return cls(
            service_code=settings.SHIPPING_SERVICE_CODE,
            handling_fee=settings.SHIPPING_HANDLING_FEE,
        )


def extract_rate(response: Dict[str, Any]) -> Tuple[Optional[float], Optional[str], bool]:
    """
    Pull the charge out of a RateResponse.

    Returns:
        (amount, currency, negotiated). amount is None when the response
        has neither a negotiated nor a published total.
    """
    rated = (response.get("RateResponse") or {}).get("RatedShipment")
    if isinstance(rated, list):
        rated = rated[0] if rated else None
    if not isinstance(rated, dict):
        return None, None, False

    negotiated = ((rated.get("NegotiatedRateCharges") or {}).get("TotalCharge")) or {}
    amount = _to_amount(negotiated.get("MonetaryValue"))
    if amount is not None:
        return amount, negotiated.get("CurrencyCode"), True

    published = rated.get("TotalCharges") or {}
    amount = _to_amount(published.get("MonetaryValue"))
    if amount is not None:
        return amount, published.get("CurrencyCode"), False

    return None, None, False


def _to_amount(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class RateEngine:
    """Negotiated-rate quoting for planned packages."""

    def __init__(
        self,
        carrier: UPSClient,
        planner: Optional[PackagePlanner] = None,
        shipper: Optional[ShipperProfile] = None,
        config: Optional[RateConfig] = None,
    ):
        self.carrier = carrier
        self.planner = planner or PackagePlanner()
        self.shipper = shipper or ShipperProfile.from_settings()
        self.config = config or RateConfig.from_settings()

    async def quote(self, order: Order, packages: Optional[List[PackageDescriptor]] = None) -> RateQuote:
        """
        Quote shipping for an order.

        Args:
            order: Order to ship
            packages: Planned packages; planned from the order when omitted

        Returns:
            RateQuote in the order currency, handling fee included

        Raises:
            AddressIncompleteError: before any carrier call
            NoRateFromProviderError: response carried no usable rate
            CurrencyMismatchError: carrier quoted in another currency
            ProviderError: carrier call failed
        """
        # Fail on an incomplete destination before planning or calling UPS
        build_ship_to(order)

        if packages is None:
            packages = self.planner.plan(order)
        total_weight = round(sum(p.weight for p in packages), 2)

        request_body = build_rate_request(order, packages, self.shipper, self.config.service_code)
        logger.info(
            f"Rating order {order.number}: {len(packages)} package(s), "
            f"{total_weight} KGS to {order.destination_country}"
        )
        response = await self.carrier.rate(request_body)

        amount, currency, negotiated = extract_rate(response)
        if amount is None:
            logger.error(f"No rate returned for order {order.number}")
            raise NoRateFromProviderError(
                f"UPS returned no rate for order {order.number}",
                details={"response": response},
            )

        currency = currency or order.currency
        if currency.upper() != order.currency.upper():
            raise CurrencyMismatchError(
                f"UPS quoted in {currency} but order {order.number} is in {order.currency}",
                order_currency=order.currency,
                provider_currency=currency,
            )

        cost = round(amount + self.config.handling_fee, 2)
        logger.info(
            f"Order {order.number} rate: {amount:.2f} {currency} "
            f"({'negotiated' if negotiated else 'published'}) + handling {self.config.handling_fee:.2f}"
        )

        return RateQuote(
            cost=cost,
            currency=order.currency,
            weight=total_weight,
            package_count=len(packages),
            provider_charge=amount,
            handling_fee=self.config.handling_fee,
            negotiated=negotiated,
            raw_response=response,
        )
