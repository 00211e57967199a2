"""
Shipment health check

Daily scan over labeled orders for data an operator should look at:
- fake_tracking: tracking number that cannot be a real UPS number (critical)
- missing_labels: tracking stored without label data (warning)
- label_mismatch: label count differs from the tracking count (warning)
- customs_failed: paperless customs gave up (warning)
- customs_stuck: submission pending with no scheduled job (info)
"""
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List

from wwe_shipping.models.customs import CustomsStatus, CustomsSubmission
from wwe_shipping.models.shipment import (
    LABEL_COUNT_KEY,
    TRACKING_NUMBERS_KEY,
    label_key,
    stored_tracking_numbers,
)
from wwe_shipping.services.order_store import OrderStore

logger = logging.getLogger(__name__)

UPS_TRACKING_PATTERN = re.compile(r"^1Z[A-Z0-9]+")
PLACEHOLDER_SUFFIX = re.compile(r"9{6,}$")
MIN_TRACKING_LENGTH = 10

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"


@dataclass
class HealthIssue:
    order_id: int
    type: str
    message: str
    severity: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_fake_tracking(tracking_number: str) -> bool:
    """True for tracking numbers no UPS shipment could have produced."""
    return (
        len(tracking_number) < MIN_TRACKING_LENGTH
        or bool(PLACEHOLDER_SUFFIX.search(tracking_number))
        or not UPS_TRACKING_PATTERN.match(tracking_number)
    )


class ShipmentHealthCheck:
    """Read-only scan; it never modifies orders."""

    def __init__(self, store: OrderStore):
        self.store = store

    async def scan(self) -> List[HealthIssue]:
        issues: List[HealthIssue] = []
        order_ids = await self.store.find_orders_with_attribute(TRACKING_NUMBERS_KEY)

        for order_id in order_ids:
            attributes = await self.store.get_attributes(order_id)
            issues.extend(self.check_order(order_id, attributes))

        if issues:
            logger.warning(f"Health check: {len(issues)} problem(s) on {len(order_ids)} labeled order(s)")
        else:
            logger.info(f"Health check: {len(order_ids)} labeled order(s), no problems")
        return issues

    def check_order(self, order_id: int, attributes: Dict[str, Any]) -> List[HealthIssue]:
        issues = []
        tracking_numbers = stored_tracking_numbers(attributes)

        for tracking in tracking_numbers:
            if is_fake_tracking(tracking):
                issues.append(HealthIssue(
                    order_id=order_id,
                    type="fake_tracking",
                    message=f"Fake tracking number detected: {tracking}",
                    severity=SEVERITY_CRITICAL,
                ))

        raw_count = attributes.get(LABEL_COUNT_KEY)
        if tracking_numbers and raw_count in (None, ""):
            issues.append(HealthIssue(
                order_id=order_id,
                type="missing_labels",
                message="Tracking present but label data missing",
                severity=SEVERITY_WARNING,
            ))
        elif tracking_numbers:
            count = int(raw_count)
            stored_labels = sum(1 for i in range(count) if attributes.get(label_key(i)))
            if count != len(tracking_numbers) or stored_labels != count:
                issues.append(HealthIssue(
                    order_id=order_id,
                    type="label_mismatch",
                    message=(
                        f"{len(tracking_numbers)} tracking number(s), label count {count}, "
                        f"{stored_labels} label image(s) stored"
                    ),
                    severity=SEVERITY_WARNING,
                ))

        submission = CustomsSubmission.from_attributes(attributes)
        if submission is not None:
            if submission.status == CustomsStatus.FAILED:
                issues.append(HealthIssue(
                    order_id=order_id,
                    type="customs_failed",
                    message=f"Customs submission failed: {submission.last_error or 'unknown error'}",
                    severity=SEVERITY_WARNING,
                ))
            elif submission.status == CustomsStatus.PENDING and not submission.job_id:
                issues.append(HealthIssue(
                    order_id=order_id,
                    type="customs_stuck",
                    message="Customs submission pending with no scheduled job",
                    severity=SEVERITY_INFO,
                ))

        return issues
