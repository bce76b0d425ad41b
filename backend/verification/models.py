"""Data models for the verification engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Mapping, Union

FieldValue = Union[str, date, None]
ExtractedFields = Mapping[str, FieldValue]


class DocumentType(str, Enum):
    """Identity and benefit document types with dedicated rule sets."""

    DRIVERS_LICENSE = "drivers_license"
    STATE_ID = "state_id"
    PASSPORT = "passport"
    EBT_CARD_FRONT = "ebt_card_front"
    EBT_CARD_BACK = "ebt_card_back"
    MEDICAID_CARD = "medicaid_card"
    OTHER = "other"


class VerificationStatus(str, Enum):
    """Verification state of an identity document."""

    PENDING = "pending"
    VERIFIED = "verified"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not VerificationStatus.PENDING


@dataclass(frozen=True)
class FieldRequirement:
    """One row of a document rule set.

    The requirement is satisfied when any of ``fields`` carries a value.
    """

    fields: tuple[str, ...]
    penalty: int
    issue: str

    def is_satisfied(self, extracted_fields: ExtractedFields) -> bool:
        return any(has_value(extracted_fields.get(name)) for name in self.fields)


@dataclass(frozen=True)
class DocumentRuleSet:
    """Required fields and expiry wording for a document type."""

    requirements: tuple[FieldRequirement, ...]
    expired_issue: str = "Document expired"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying one document."""

    status: VerificationStatus
    confidence: int
    issues: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "confidence": self.confidence,
            "issues": list(self.issues),
        }


def has_value(value: FieldValue) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True
