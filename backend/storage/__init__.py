"""Persistence adapters: relational store, blob store and audit trail."""

from .audit import AuditAction, AuditLogRepository
from .blob_store import BlobStore, LocalBlobStore, S3BlobStore, document_blob_key
from .database import TenantScopedDatabase
from .documents import IdentityDocumentRepository, PatientRepository
from .models import AuditEntry, IdentityDocument, Patient

__all__ = [
    "AuditAction",
    "AuditLogRepository",
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "document_blob_key",
    "TenantScopedDatabase",
    "IdentityDocumentRepository",
    "PatientRepository",
    "AuditEntry",
    "IdentityDocument",
    "Patient",
]
