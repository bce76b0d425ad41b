"""Tenant-scoped repositories for patients and identity documents.

Every method takes a ``TenantSession``; none of them can run outside a
tenant scope.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping

from security.field_cipher import FieldCipher
from tenancy.context import TenantSession
from verification.models import VerificationResult, VerificationStatus

from .models import IdentityDocument, Patient

logger = logging.getLogger(__name__)

_DOCUMENT_COLUMNS = """
    d.id, d.tenant_id, d.patient_id, d.document_type, d.blob_key,
    d.extracted_fields, d.verification_status, d.verification_confidence,
    d.verification_issues, d.verified_at, d.created_at, d.updated_at,
    p.patient_ref_id
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PatientRepository:
    """Read access to patients owned by the patient-link service."""

    def get_by_ref(self, session: TenantSession, patient_ref_id: str) -> Patient | None:
        row = session.fetch_one(
            """
            SELECT id, tenant_id, patient_ref_id, created_at FROM patients
            WHERE tenant_id = :tenant_id AND patient_ref_id = :patient_ref_id
            """,
            {"patient_ref_id": patient_ref_id},
        )
        return Patient(**dict(row)) if row else None

    def get_ref_id_for_document(self, session: TenantSession, document_id: str) -> str | None:
        row = session.fetch_one(
            """
            SELECT p.patient_ref_id FROM identity_documents d
            JOIN patients p ON p.id = d.patient_id AND p.tenant_id = d.tenant_id
            WHERE d.tenant_id = :tenant_id AND d.id = :document_id
            """,
            {"document_id": document_id},
        )
        return row["patient_ref_id"] if row else None

    def insert(self, session: TenantSession, patient_ref_id: str) -> Patient:
        """Insert a patient link (used by the patient-link service and seeding)."""
        patient = Patient(
            id=str(uuid.uuid4()),
            tenant_id=session.tenant_id,
            patient_ref_id=patient_ref_id,
            created_at=utc_now(),
        )
        session.execute(
            """
            INSERT INTO patients (id, tenant_id, patient_ref_id, created_at)
            VALUES (:id, :tenant_id, :patient_ref_id, :created_at)
            """,
            {"id": patient.id, "patient_ref_id": patient_ref_id, "created_at": patient.created_at},
        )
        return patient


class IdentityDocumentRepository:
    """Metadata records for uploaded identity documents."""

    def __init__(self, cipher: FieldCipher) -> None:
        self.cipher = cipher

    def _from_row(self, row: sqlite3.Row) -> IdentityDocument:
        issues = json.loads(row["verification_issues"]) if row["verification_issues"] else []
        return IdentityDocument(
            id=row["id"],
            tenant_id=row["tenant_id"],
            patient_id=row["patient_id"],
            document_type=row["document_type"],
            blob_key=row["blob_key"],
            extracted_fields=self.cipher.decrypt_fields(row["extracted_fields"]),
            verification_status=VerificationStatus(row["verification_status"]),
            verification_confidence=row["verification_confidence"],
            verification_issues=issues,
            verified_at=row["verified_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            patient_ref_id=row["patient_ref_id"],
        )

    def insert_pending(
        self,
        session: TenantSession,
        document_id: str,
        patient_id: str,
        document_type: str,
        blob_key: str,
        extracted_fields: Mapping[str, Any],
    ) -> bool:
        """Insert a pending document for a patient of the session's tenant.

        The row is selected from ``patients`` under the tenant predicate, so a
        patient id from another tenant inserts nothing. ``last_enqueued_at``
        starts at insert time since upload enqueues right after the commit.

        Returns:
            True if the row was inserted
        """
        now = utc_now()
        cursor = session.execute(
            """
            INSERT INTO identity_documents (
                id, tenant_id, patient_id, document_type, blob_key,
                extracted_fields, verification_status, last_enqueued_at,
                created_at, updated_at
            )
            SELECT :id, p.tenant_id, p.id, :document_type, :blob_key,
                   :extracted_fields, 'pending', :now, :now, :now
            FROM patients p
            WHERE p.tenant_id = :tenant_id AND p.id = :patient_id
            """,
            {
                "id": document_id,
                "patient_id": patient_id,
                "document_type": document_type,
                "blob_key": blob_key,
                "extracted_fields": self.cipher.encrypt_fields(dict(extracted_fields)),
                "now": now,
            },
        )
        return cursor.rowcount == 1

    def get(self, session: TenantSession, document_id: str) -> IdentityDocument | None:
        row = session.fetch_one(
            f"""
            SELECT {_DOCUMENT_COLUMNS}
            FROM identity_documents d
            JOIN patients p ON p.id = d.patient_id AND p.tenant_id = d.tenant_id
            WHERE d.tenant_id = :tenant_id AND d.id = :document_id
            """,
            {"document_id": document_id},
        )
        return self._from_row(row) if row else None

    def list_for_patient(self, session: TenantSession, patient_ref_id: str) -> list[IdentityDocument]:
        rows = session.fetch_all(
            f"""
            SELECT {_DOCUMENT_COLUMNS}
            FROM identity_documents d
            JOIN patients p ON p.id = d.patient_id AND p.tenant_id = d.tenant_id
            WHERE d.tenant_id = :tenant_id AND p.patient_ref_id = :patient_ref_id
            ORDER BY d.created_at DESC, d.id
            """,
            {"patient_ref_id": patient_ref_id},
        )
        return [self._from_row(row) for row in rows]

    def list_stale_pending(
        self, session: TenantSession, enqueued_before: str
    ) -> list[IdentityDocument]:
        """Pending documents whose last job was sent before ``enqueued_before``."""
        rows = session.fetch_all(
            f"""
            SELECT {_DOCUMENT_COLUMNS}
            FROM identity_documents d
            JOIN patients p ON p.id = d.patient_id AND p.tenant_id = d.tenant_id
            WHERE d.tenant_id = :tenant_id
              AND d.verification_status = 'pending'
              AND d.last_enqueued_at < :enqueued_before
            ORDER BY d.last_enqueued_at
            """,
            {"enqueued_before": enqueued_before},
        )
        return [self._from_row(row) for row in rows]

    def mark_enqueued(self, session: TenantSession, document_id: str, enqueued_at: str) -> None:
        """Record that a verification job for a pending document was just sent."""
        session.execute(
            """
            UPDATE identity_documents SET last_enqueued_at = :enqueued_at
            WHERE tenant_id = :tenant_id AND id = :document_id
              AND verification_status = 'pending'
            """,
            {"enqueued_at": enqueued_at, "document_id": document_id},
        )

    def record_verification(
        self,
        session: TenantSession,
        document_id: str,
        result: VerificationResult,
    ) -> IdentityDocument | None:
        """Write a verification result if the document is still pending.

        The write only applies to a pending row: a redelivered job finds the
        terminal result from the first delivery and leaves it untouched, so
        repeated processing converges on the same row and never moves a
        terminal document back.

        Returns:
            The stored document after the write, or None if it doesn't exist
        """
        now = utc_now()
        cursor = session.execute(
            """
            UPDATE identity_documents
            SET verification_status = :status,
                verification_confidence = :confidence,
                verification_issues = :issues,
                verified_at = :now,
                updated_at = :now
            WHERE tenant_id = :tenant_id AND id = :document_id
              AND verification_status = 'pending'
            """,
            {
                "status": result.status.value,
                "confidence": result.confidence,
                "issues": json.dumps(list(result.issues)),
                "now": now,
                "document_id": document_id,
            },
        )
        if cursor.rowcount == 0:
            logger.info(f"Document {document_id} already verified, keeping stored result")
        return self.get(session, document_id)
