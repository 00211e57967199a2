"""
Package Planner

Turns an order's shippable line items into UPS-compliant package
descriptors.

Rules:
- Total weight at or below the per-package ceiling ships as one box sized
  by weight tier (small / medium / large)
- Heavier orders split into ceil(total / ceiling) equal-weight boxes, all
  in the large size, each clamped to the minimum package weight
- More boxes than the configured maximum is an error
"""
import logging
import math
from dataclasses import dataclass
from typing import List, Tuple

from wwe_shipping.core.config import settings
from wwe_shipping.core.exceptions import (
    InvalidWeightError,
    MissingWeightError,
    NoShippableItemsError,
    TooManyPackagesError,
)
from wwe_shipping.models.order import Order
from wwe_shipping.models.shipment import CUSTOMER_SUPPLIED_PACKAGE, PackageDescriptor

logger = logging.getLogger(__name__)

# (upper weight bound in KGS, size name, (length, width, height) in CM)
BOX_TIERS: Tuple[Tuple[float, str, Tuple[float, float, float]], ...] = (
    (5.0, "small", (33, 33, 4)),
    (12.0, "medium", (33, 33, 10)),
)
LARGE_BOX = ("large", (33, 33, 33))

WEIGHT_PRECISION = 2


@dataclass
class PlannerConfig:
    max_package_weight: float = 15.0
    min_package_weight: float = 0.1
    max_packages: int = 10
    weight_unit: str = "KGS"
    dimension_unit: str = "CM"
    packaging_code: str = CUSTOMER_SUPPLIED_PACKAGE

    @classmethod
    def from_settings(cls) -> "PlannerConfig":
        return cls(
            max_package_weight=settings.SHIPPING_MAX_PACKAGE_WEIGHT,
            min_package_weight=settings.SHIPPING_MIN_PACKAGE_WEIGHT,
            max_packages=settings.SHIPPING_MAX_PACKAGES,
        )


def box_for_weight(weight: float) -> Tuple[str, Tuple[float, float, float]]:
    """Pick the smallest box tier that holds the given weight."""
    for upper_bound, name, dimensions in BOX_TIERS:
        if weight <= upper_bound:
            return name, dimensions
    return LARGE_BOX


class PackagePlanner:
    """Splits orders into packages."""

    def __init__(self, config: PlannerConfig = None):
        self.config = config or PlannerConfig.from_settings()

    def total_weight(self, order: Order) -> float:
        """
        Sum unit weight x quantity over items that need shipping.

        Raises:
            NoShippableItemsError: nothing to ship, or total is not positive
            MissingWeightError: a shippable item has no weight
            InvalidWeightError: a weight is not a positive number
        """
        items = order.shippable_items()
        if not items:
            raise NoShippableItemsError(f"Order {order.number} has no items that need shipping")

        total = 0.0
        for item in items:
            if item.weight is None or item.weight == "":
                raise MissingWeightError(
                    f"Product '{item.name or item.product_ref}' has no weight set",
                    product_ref=item.product_ref,
                )
            try:
                weight = float(item.weight)
            except (TypeError, ValueError):
                raise InvalidWeightError(
                    f"Product '{item.name or item.product_ref}' has a non-numeric weight",
                    product_ref=item.product_ref,
                    weight=item.weight,
                )
            if not math.isfinite(weight) or weight <= 0:
                raise InvalidWeightError(
                    f"Product '{item.name or item.product_ref}' weight must be positive",
                    product_ref=item.product_ref,
                    weight=item.weight,
                )
            total += weight * int(item.quantity)

        total = round(total, WEIGHT_PRECISION)
        if total <= 0:
            raise NoShippableItemsError(f"Order {order.number} total weight is zero")
        return total

    def plan(self, order: Order) -> List[PackageDescriptor]:
        """
        Plan packages for an order.

        Returns:
            One descriptor when the order fits in a single box, otherwise
            ceil(total / ceiling) large boxes whose weights sum to the total
        """
        total = self.total_weight(order)
        return self.plan_weight(total, reference=f"Order {order.number}")

    def plan_weight(self, total: float, reference: str = "") -> List[PackageDescriptor]:
        cfg = self.config
        ceiling = cfg.max_package_weight

        if total <= ceiling:
            weight = max(total, cfg.min_package_weight)
            size_name, (length, width, height) = box_for_weight(weight)
            logger.debug(f"{reference}: single {size_name} package, {weight} {cfg.weight_unit}")
            return [
                PackageDescriptor(
                    weight=weight,
                    length=length,
                    width=width,
                    height=height,
                    weight_unit=cfg.weight_unit,
                    dimension_unit=cfg.dimension_unit,
                    packaging_code=cfg.packaging_code,
                    size_name=size_name,
                    reference=reference,
                )
            ]

        count = math.ceil(round(total / ceiling, 9))
        if count > cfg.max_packages:
            raise TooManyPackagesError(
                f"Order weight {total} {cfg.weight_unit} needs {count} packages "
                f"(maximum {cfg.max_packages})",
                package_count=count,
                max_packages=cfg.max_packages,
            )

        weights = self._split_weights(total, count)
        size_name, (length, width, height) = LARGE_BOX

        logger.info(
            f"{reference}: split {total} {cfg.weight_unit} into {count} packages {weights}"
        )
        return [
            PackageDescriptor(
                weight=weight,
                length=length,
                width=width,
                height=height,
                weight_unit=cfg.weight_unit,
                dimension_unit=cfg.dimension_unit,
                packaging_code=cfg.packaging_code,
                size_name=size_name,
                reference=f"Box {index}/{count}",
            )
            for index, weight in enumerate(weights, start=1)
        ]

    def _split_weights(self, total: float, count: int) -> List[float]:
        """
        Equal shares rounded to two decimals; the last box absorbs the
        rounding remainder so the shares sum to the total exactly.
        """
        share = round(total / count, WEIGHT_PRECISION)
        weights = [share] * (count - 1)
        weights.append(round(total - share * (count - 1), WEIGHT_PRECISION))
        return [
            min(max(weight, self.config.min_package_weight), self.config.max_package_weight)
            for weight in weights
        ]
