"""Process wiring for the API and the worker.

Builds every dependency once at process start from ``Settings`` and hands
back a ``Services`` container whose ``close()`` releases them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from config import Settings
from identity.reconciliation import PendingDocumentSweeper
from identity.service import IdentityIngestService
from identity.worker import IdentityVerificationWorker
from messaging.events import EventBridgePublisher, EventPublisher, InMemoryEventPublisher
from messaging.queue import InMemoryVerificationQueue, SQSVerificationQueue, VerificationQueue
from security.auth import ApiKeyAuthenticator
from security.field_cipher import FieldCipher
from storage.audit import AuditLogRepository
from storage.blob_store import BlobStore, LocalBlobStore, S3BlobStore
from storage.database import TenantScopedDatabase
from storage.documents import IdentityDocumentRepository, PatientRepository

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    database: TenantScopedDatabase
    cipher: FieldCipher
    blob_store: BlobStore
    queue: VerificationQueue
    publisher: EventPublisher
    authenticator: ApiKeyAuthenticator
    documents: IdentityDocumentRepository
    patients: PatientRepository
    audit: AuditLogRepository
    ingest: IdentityIngestService

    def build_worker(self) -> IdentityVerificationWorker:
        settings = self.settings
        return IdentityVerificationWorker(
            queue=self.queue,
            database=self.database,
            publisher=self.publisher,
            documents=self.documents,
            patients=self.patients,
            batch_size=settings.worker_batch_size,
            wait_seconds=settings.worker_wait_seconds,
            visibility_timeout=settings.worker_visibility_timeout,
            poll_interval_seconds=settings.worker_poll_interval_seconds,
            error_backoff_seconds=settings.worker_error_backoff_seconds,
        )

    def build_sweeper(self) -> PendingDocumentSweeper:
        return PendingDocumentSweeper(
            database=self.database,
            queue=self.queue,
            documents=self.documents,
            stale_after_seconds=self.settings.reconcile_stale_after_seconds,
        )

    def close(self) -> None:
        for resource in (self.queue, self.publisher, self.blob_store):
            try:
                resource.close()
            except Exception:
                logger.exception(f"Failed to close {type(resource).__name__}")


def _build_blob_store(settings: Settings, cipher: FieldCipher) -> BlobStore:
    if settings.blob_backend == "s3":
        return S3BlobStore(
            bucket=settings.phi_bucket,
            region=settings.aws_region,
            kms_key_id=settings.phi_kms_key_id or None,
            endpoint_url=settings.aws_endpoint_url or None,
        )
    return LocalBlobStore(
        root=settings.blob_local_root,
        cipher=cipher,
        public_base_url=settings.public_base_url,
    )


def _build_queue(settings: Settings) -> VerificationQueue:
    if settings.queue_url:
        return SQSVerificationQueue(
            queue_url=settings.queue_url,
            region=settings.aws_region,
            endpoint_url=settings.aws_endpoint_url or None,
        )
    logger.warning(
        "IDENTITY_VERIFICATION_QUEUE_URL not set - using in-process queue "
        "(jobs are not shared between processes)"
    )
    return InMemoryVerificationQueue()


def _build_publisher(settings: Settings) -> EventPublisher:
    if settings.event_backend == "memory":
        return InMemoryEventPublisher()
    return EventBridgePublisher(
        event_bus_name=settings.event_bus_name,
        source=settings.event_source,
        region=settings.aws_region,
        endpoint_url=settings.aws_endpoint_url or None,
    )


def build_services(settings: Settings | None = None) -> Services:
    """Construct and initialize all pipeline dependencies."""
    settings = settings or Settings.from_env()

    database = TenantScopedDatabase(settings.db_path)
    database.init_schema()

    cipher = FieldCipher(settings.field_encryption_key or None)
    blob_store = _build_blob_store(settings, cipher)
    queue = _build_queue(settings)
    publisher = _build_publisher(settings)
    documents = IdentityDocumentRepository(cipher)
    patients = PatientRepository()
    audit = AuditLogRepository()

    ingest = IdentityIngestService(
        database=database,
        blob_store=blob_store,
        queue=queue,
        publisher=publisher,
        documents=documents,
        patients=patients,
        audit=audit,
        download_url_ttl_seconds=settings.download_url_ttl_seconds,
        max_upload_bytes=settings.max_upload_bytes,
    )

    logger.info(
        f"Identity services ready (blob={settings.blob_backend}, "
        f"queue={'sqs' if settings.queue_url else 'memory'}, "
        f"events={settings.event_backend})"
    )
    return Services(
        settings=settings,
        database=database,
        cipher=cipher,
        blob_store=blob_store,
        queue=queue,
        publisher=publisher,
        authenticator=ApiKeyAuthenticator(settings.api_keys),
        documents=documents,
        patients=patients,
        audit=audit,
        ingest=ingest,
    )
