"""
Parcel content pre-registration model

Tracks the i-Parcel SubmitParcel call made before the first label so the
carrier knows the parcel contents. Stored as named order attributes.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

PRE_LABEL_SUBMITTED_KEY = "iparcel_pre_label_submitted"
PRE_LABEL_SUBMITTED_AT_KEY = "iparcel_pre_label_submitted_at"
PRE_LABEL_ATTEMPTED_AT_KEY = "iparcel_pre_label_attempted_at"
PRE_LABEL_ERROR_KEY = "iparcel_pre_label_error"
PRE_LABEL_DATA_KEY = "iparcel_pre_label_data"
PRE_LABEL_VOIDED_KEY = "iparcel_pre_label_voided"
PRE_LABEL_VOIDED_AT_KEY = "iparcel_pre_label_voided_at"
PRE_LABEL_VOIDED_TRACKING_KEY = "iparcel_pre_label_voided_tracking"

# Cleared on void; the voided markers stay behind
PRE_LABEL_DATA_KEYS = (
    PRE_LABEL_SUBMITTED_KEY,
    PRE_LABEL_SUBMITTED_AT_KEY,
    PRE_LABEL_ATTEMPTED_AT_KEY,
    PRE_LABEL_ERROR_KEY,
    PRE_LABEL_DATA_KEY,
)


@dataclass
class PreLabelRegistration:
    submitted: bool = False
    submitted_at: Optional[datetime] = None
    attempted_at: Optional[datetime] = None
    error: Optional[str] = None
    data: Optional[Any] = None
    voided: bool = False
    voided_at: Optional[datetime] = None
    voided_tracking: Optional[str] = None

    @property
    def status(self) -> str:
        if self.voided:
            return "voided"
        if self.submitted:
            return "success"
        if self.error:
            return "error"
        return "pending"

    @classmethod
    def from_attributes(cls, attributes: Dict[str, Any]) -> "PreLabelRegistration":
        return cls(
            submitted=bool(attributes.get(PRE_LABEL_SUBMITTED_KEY)),
            submitted_at=_parse(attributes.get(PRE_LABEL_SUBMITTED_AT_KEY)),
            attempted_at=_parse(attributes.get(PRE_LABEL_ATTEMPTED_AT_KEY)),
            error=attributes.get(PRE_LABEL_ERROR_KEY),
            data=attributes.get(PRE_LABEL_DATA_KEY),
            voided=bool(attributes.get(PRE_LABEL_VOIDED_KEY)),
            voided_at=_parse(attributes.get(PRE_LABEL_VOIDED_AT_KEY)),
            voided_tracking=attributes.get(PRE_LABEL_VOIDED_TRACKING_KEY),
        )


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
