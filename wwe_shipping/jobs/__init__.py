"""
Jobs Package

Background job definitions for ARQ
"""
from wwe_shipping.jobs.shipping_jobs import (
    submit_customs_job,
    scan_shipment_health,
)

__all__ = [
    "submit_customs_job",
    "scan_shipment_health",
]
