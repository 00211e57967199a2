"""
Customs submission models

One CustomsSubmission per order tracks the paperless commercial invoice
through upload, link and retries. Stored as named order attributes.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

CUSTOMS_STATUS_KEY = "customs_status"
CUSTOMS_ATTEMPTS_KEY = "customs_attempts"
CUSTOMS_LAST_ERROR_KEY = "customs_last_error"
CUSTOMS_NEXT_RETRY_KEY = "customs_next_retry_at"
CUSTOMS_DOCUMENT_ID_KEY = "customs_document_id"
CUSTOMS_TRACKING_KEY = "customs_tracking_number"
CUSTOMS_SUBMITTED_AT_KEY = "customs_submitted_at"
CUSTOMS_METHOD_KEY = "customs_method"
CUSTOMS_JOB_ID_KEY = "customs_job_id"
CUSTOMS_VOIDED_AT_KEY = "customs_voided_at"

CUSTOMS_ATTRIBUTE_KEYS = (
    CUSTOMS_STATUS_KEY,
    CUSTOMS_ATTEMPTS_KEY,
    CUSTOMS_LAST_ERROR_KEY,
    CUSTOMS_NEXT_RETRY_KEY,
    CUSTOMS_DOCUMENT_ID_KEY,
    CUSTOMS_TRACKING_KEY,
    CUSTOMS_SUBMITTED_AT_KEY,
    CUSTOMS_METHOD_KEY,
    CUSTOMS_JOB_ID_KEY,
    CUSTOMS_VOIDED_AT_KEY,
)

PAPERLESS_METHOD = "paperless_documents_v2"


class CustomsStatus(str, enum.Enum):
    """Customs submission lifecycle"""
    NOT_REQUIRED = "not_required"  # Domestic shipment
    PENDING = "pending"  # Scheduled, waiting for cool-down or retry
    PROCESSING = "processing"  # Upload/link in flight
    SUBMITTED = "submitted"  # Terminal success
    FAILED = "failed"  # Terminal failure after max retries
    VOIDED = "voided"  # Shipment voided, never submit again

    @property
    def is_terminal(self) -> bool:
        return self in (
            CustomsStatus.NOT_REQUIRED,
            CustomsStatus.SUBMITTED,
            CustomsStatus.FAILED,
            CustomsStatus.VOIDED,
        )


@dataclass
class CustomsSubmission:
    status: CustomsStatus = CustomsStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    document_id: Optional[str] = None
    tracking_number: Optional[str] = None
    submitted_at: Optional[datetime] = None
    job_id: Optional[str] = None
    voided_at: Optional[datetime] = None

    def to_attributes(self) -> Dict[str, Any]:
        return {
            CUSTOMS_STATUS_KEY: self.status.value,
            CUSTOMS_ATTEMPTS_KEY: self.attempts,
            CUSTOMS_LAST_ERROR_KEY: self.last_error,
            CUSTOMS_NEXT_RETRY_KEY: _iso(self.next_retry_at),
            CUSTOMS_DOCUMENT_ID_KEY: self.document_id,
            CUSTOMS_TRACKING_KEY: self.tracking_number,
            CUSTOMS_SUBMITTED_AT_KEY: _iso(self.submitted_at),
            CUSTOMS_METHOD_KEY: PAPERLESS_METHOD if self.document_id else None,
            CUSTOMS_JOB_ID_KEY: self.job_id,
            CUSTOMS_VOIDED_AT_KEY: _iso(self.voided_at),
        }

    @classmethod
    def from_attributes(cls, attributes: Dict[str, Any]) -> Optional["CustomsSubmission"]:
        """Rebuild from stored attributes. Returns None when customs was never triggered."""
        status = attributes.get(CUSTOMS_STATUS_KEY)
        if not status:
            return None
        return cls(
            status=CustomsStatus(status),
            attempts=int(attributes.get(CUSTOMS_ATTEMPTS_KEY) or 0),
            last_error=attributes.get(CUSTOMS_LAST_ERROR_KEY),
            next_retry_at=_parse(attributes.get(CUSTOMS_NEXT_RETRY_KEY)),
            document_id=attributes.get(CUSTOMS_DOCUMENT_ID_KEY),
            tracking_number=attributes.get(CUSTOMS_TRACKING_KEY),
            submitted_at=_parse(attributes.get(CUSTOMS_SUBMITTED_AT_KEY)),
            job_id=attributes.get(CUSTOMS_JOB_ID_KEY),
            voided_at=_parse(attributes.get(CUSTOMS_VOIDED_AT_KEY)),
        )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
