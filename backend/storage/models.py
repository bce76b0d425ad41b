"""Records read from the relational store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from verification.models import VerificationStatus


@dataclass(frozen=True)
class Patient:
    id: str
    tenant_id: str
    patient_ref_id: str
    created_at: str


@dataclass(frozen=True)
class IdentityDocument:
    """One uploaded identity or benefit document.

    ``patient_id`` is internal and never leaves the service; external
    payloads use ``patient_ref_id``.
    """

    id: str
    tenant_id: str
    patient_id: str
    document_type: str
    blob_key: str
    extracted_fields: dict[str, Any]
    verification_status: VerificationStatus
    verification_confidence: int | None
    verification_issues: list[str] = field(default_factory=list)
    verified_at: str | None = None
    created_at: str = ""
    updated_at: str = ""
    patient_ref_id: str | None = None

    def to_public_dict(self) -> dict[str, Any]:
        """Metadata safe to return to an authorized tenant caller."""
        return {
            "document_id": self.id,
            "patient_ref_id": self.patient_ref_id,
            "document_type": self.document_type,
            "extracted_fields": self.extracted_fields,
            "verification_status": self.verification_status.value,
            "verification_confidence": self.verification_confidence,
            "verification_issues": list(self.verification_issues),
            "verified_at": self.verified_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class AuditEntry:
    id: str
    tenant_id: str
    timestamp: str
    action: str
    actor: str | None
    resource_type: str | None
    resource_id: str | None
    status: str
