"""Identity document ingest service.

Accepts document images for a tenant's patient, stores the bytes in the
PHI blob store, records a pending metadata row, enqueues a verification
job and announces the upload on the event bus.

Write order matters: the blob is written before metadata references it,
and the job is enqueued only after the metadata row is committed, so the
worker never sees a job for a document it cannot load.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Mapping

from errors import NotFoundError, ValidationError
from messaging.events import EventPublisher, IdentityDocumentUploaded
from messaging.queue import VerificationJob, VerificationQueue
from storage.audit import AuditAction, AuditLogRepository
from storage.blob_store import BlobStore, document_blob_key
from storage.database import TenantScopedDatabase
from storage.documents import IdentityDocumentRepository, PatientRepository
from storage.models import IdentityDocument
from utils.sanitization import sanitize_log_value

logger = logging.getLogger(__name__)

DOCUMENT_TYPE_PATTERN = re.compile(r"^[a-z0-9_]{1,64}$")
MAX_PATIENT_REF_LENGTH = 128
MAX_FIELD_NAME_LENGTH = 64
MAX_FIELD_VALUE_LENGTH = 512
MAX_EXTRACTED_FIELDS = 50

RESOURCE_TYPE = "identity_document"


def _validate_extracted_fields(extracted_fields: Mapping[str, Any] | None) -> dict[str, Any]:
    if extracted_fields is None:
        return {}
    if not isinstance(extracted_fields, Mapping):
        raise ValidationError("extracted_fields must be an object")
    if len(extracted_fields) > MAX_EXTRACTED_FIELDS:
        raise ValidationError(f"extracted_fields may hold at most {MAX_EXTRACTED_FIELDS} entries")

    cleaned: dict[str, Any] = {}
    for name, value in extracted_fields.items():
        if not isinstance(name, str) or not name or len(name) > MAX_FIELD_NAME_LENGTH:
            raise ValidationError("extracted_fields keys must be short non-empty strings")
        if value is not None and not isinstance(value, (str, int, float, bool)):
            raise ValidationError(f"extracted_fields.{name} must be a scalar value")
        if isinstance(value, str) and len(value) > MAX_FIELD_VALUE_LENGTH:
            raise ValidationError(f"extracted_fields.{name} is too long")
        cleaned[name] = value
    return cleaned


class IdentityIngestService:
    """Upload and read paths for identity documents."""

    def __init__(
        self,
        database: TenantScopedDatabase,
        blob_store: BlobStore,
        queue: VerificationQueue,
        publisher: EventPublisher,
        documents: IdentityDocumentRepository,
        patients: PatientRepository | None = None,
        audit: AuditLogRepository | None = None,
        download_url_ttl_seconds: int = 300,
        max_upload_bytes: int = 10 * 1024 * 1024,
    ) -> None:
        self.database = database
        self.blob_store = blob_store
        self.queue = queue
        self.publisher = publisher
        self.documents = documents
        self.patients = patients or PatientRepository()
        self.audit = audit or AuditLogRepository()
        self.download_url_ttl_seconds = download_url_ttl_seconds
        self.max_upload_bytes = max_upload_bytes

    def upload_document(
        self,
        tenant_id: str,
        patient_ref_id: str,
        document_type: str,
        payload: bytes,
        extracted_fields: Mapping[str, Any] | None = None,
        actor: str | None = None,
    ) -> dict[str, str]:
        """Store a document and schedule it for verification.

        Args:
            tenant_id: Tenant the caller is authorized for
            patient_ref_id: External patient reference within the tenant
            document_type: Document type slug (e.g. ``drivers_license``)
            payload: Raw image bytes
            extracted_fields: OCR/extraction output, scalar values only
            actor: Identifier of the caller, for the audit trail

        Returns:
            ``{"document_id": ..., "status": "stored"}``

        Raises:
            ValidationError: If a required input is missing or malformed
            TenantContextError: If the tenant id is missing or invalid
            NotFoundError: If the patient is unknown in this tenant
            StorageError: If the blob store, relational store, queue or
                event bus fails
        """
        if not patient_ref_id or not str(patient_ref_id).strip():
            raise ValidationError("patient_ref_id is required")
        if len(patient_ref_id) > MAX_PATIENT_REF_LENGTH:
            raise ValidationError("patient_ref_id is too long")
        if not document_type:
            raise ValidationError("document_type is required")
        if not DOCUMENT_TYPE_PATTERN.match(document_type):
            raise ValidationError("document_type must be a lowercase slug")
        if not payload:
            raise ValidationError("Document image is required")
        if len(payload) > self.max_upload_bytes:
            raise ValidationError(
                f"Document image exceeds {self.max_upload_bytes} bytes"
            )
        fields = _validate_extracted_fields(extracted_fields)

        document_id = str(uuid.uuid4())
        with self.database.scope(tenant_id) as session:
            patient = self.patients.get_by_ref(session, patient_ref_id)
            if patient is None:
                raise NotFoundError("Patient not found")

            blob_key = document_blob_key(session.tenant_id, document_id)
            self.blob_store.put(blob_key, payload)

            inserted = self.documents.insert_pending(
                session,
                document_id=document_id,
                patient_id=patient.id,
                document_type=document_type,
                blob_key=blob_key,
                extracted_fields=fields,
            )
            if not inserted:
                raise NotFoundError("Patient not found")

            self.audit.record(
                session,
                AuditAction.DOCUMENT_UPLOAD,
                actor=actor,
                resource_type=RESOURCE_TYPE,
                resource_id=document_id,
            )
            tenant = session.tenant_id

        self.queue.send(
            VerificationJob(
                document_id=document_id,
                patient_id=patient.id,
                document_type=document_type,
                tenant_id=tenant,
            )
        )
        self.publisher.publish(
            IdentityDocumentUploaded(
                document_id=document_id,
                patient_ref_id=patient_ref_id,
                document_type=document_type,
            )
        )

        logger.info(
            f"Stored {document_type} document {document_id} for tenant "
            f"{sanitize_log_value(tenant)}"
        )
        return {"document_id": document_id, "status": "stored"}

    def get_document(
        self, tenant_id: str, document_id: str, actor: str | None = None
    ) -> IdentityDocument:
        """Return document metadata (never bytes).

        Raises:
            NotFoundError: If the document doesn't exist in this tenant
        """
        with self.database.scope(tenant_id) as session:
            document = self.documents.get(session, document_id)
            if document is None:
                raise NotFoundError("Document not found", document_id)
            self.audit.record(
                session,
                AuditAction.DOCUMENT_VIEW,
                actor=actor,
                resource_type=RESOURCE_TYPE,
                resource_id=document_id,
            )
        return document

    def list_documents(
        self, tenant_id: str, patient_ref_id: str, actor: str | None = None
    ) -> list[IdentityDocument]:
        """List a patient's documents, newest first."""
        if not patient_ref_id:
            raise ValidationError("patient_ref_id is required")
        with self.database.scope(tenant_id) as session:
            documents = self.documents.list_for_patient(session, patient_ref_id)
            self.audit.record(
                session,
                AuditAction.DOCUMENT_LIST,
                actor=actor,
                resource_type="patient",
                resource_id=patient_ref_id,
            )
        return documents

    def get_download_url(
        self, tenant_id: str, document_id: str, actor: str | None = None
    ) -> dict[str, Any]:
        """Issue a short-lived signed URL for the document image.

        Raises:
            NotFoundError: If the document doesn't exist in this tenant
        """
        with self.database.scope(tenant_id) as session:
            document = self.documents.get(session, document_id)
            if document is None:
                raise NotFoundError("Document not found", document_id)
            url = self.blob_store.generate_download_url(
                document.blob_key, self.download_url_ttl_seconds
            )
            self.audit.record(
                session,
                AuditAction.DOCUMENT_DOWNLOAD_URL,
                actor=actor,
                resource_type=RESOURCE_TYPE,
                resource_id=document_id,
            )
        return {"download_url": url, "expires_in": self.download_url_ttl_seconds}
