"""Verification worker.

Long-polls the verification queue and runs the verification engine over
each pending document. Queue redelivery after the visibility timeout is
the only retry mechanism: a message is deleted only once its result is
persisted and the ``IdentityDocumentVerified`` event is published, and a
message that fails for any reason is simply left on the queue.
"""

from __future__ import annotations

import logging
import signal
import threading
from datetime import date, datetime, timezone
from typing import Any, Callable

from errors import IdentityServiceError, TransientProcessingError
from messaging.events import EventPublisher, IdentityDocumentVerified
from messaging.queue import QueueMessage, VerificationJob, VerificationQueue
from storage.database import TenantScopedDatabase
from storage.documents import IdentityDocumentRepository, PatientRepository
from storage.models import IdentityDocument
from utils.sanitization import sanitize_log_value
from verification import VerificationStatus, not_found_result, verify_document

logger = logging.getLogger(__name__)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class IdentityVerificationWorker:
    """Single-threaded poll loop; scale out by running more processes."""

    def __init__(
        self,
        queue: VerificationQueue,
        database: TenantScopedDatabase,
        publisher: EventPublisher,
        documents: IdentityDocumentRepository,
        patients: PatientRepository | None = None,
        batch_size: int = 10,
        wait_seconds: int = 20,
        visibility_timeout: int = 300,
        poll_interval_seconds: float = 1,
        error_backoff_seconds: float = 5,
        today: Callable[[], date] | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            queue: Verification job queue
            database: Tenant-scoped relational store
            publisher: Event bus for ``IdentityDocumentVerified``
            documents: Document metadata repository
            patients: Patient repository (for ``patient_ref_id`` lookup)
            batch_size: Max messages per receive (1-10)
            wait_seconds: Long-poll wait per receive
            visibility_timeout: Seconds a received message stays hidden
            poll_interval_seconds: Pause between polls
            error_backoff_seconds: Pause after a failed poll
            today: Clock for expiration checks
        """
        self.queue = queue
        self.database = database
        self.publisher = publisher
        self.documents = documents
        self.patients = patients or PatientRepository()
        self.batch_size = batch_size
        self.wait_seconds = wait_seconds
        self.visibility_timeout = visibility_timeout
        self.poll_interval_seconds = poll_interval_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self.today = today or _utc_today
        self._stop_event = threading.Event()

    @property
    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Stop issuing new polls; the batch in hand is still finished."""
        if not self._stop_event.is_set():
            logger.info("Verification worker stopping")
        self._stop_event.set()

    def install_signal_handlers(self) -> None:
        """Stop gracefully on SIGTERM and SIGINT (main thread only)."""

        def _handle(signum: int, _frame: Any) -> None:
            logger.info(f"Received signal {signum}, shutting down")
            self.stop()

        signal.signal(signal.SIGTERM, _handle)
        signal.signal(signal.SIGINT, _handle)

    def run(self) -> None:
        """Poll until ``stop()`` is called."""
        logger.info(
            f"Verification worker started (batch={self.batch_size}, "
            f"wait={self.wait_seconds}s, visibility={self.visibility_timeout}s)"
        )
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except IdentityServiceError as e:
                logger.error(f"Queue poll failed: {e.message}")
                self._stop_event.wait(self.error_backoff_seconds)
                continue
            except Exception:
                logger.exception("Unexpected error while polling verification queue")
                self._stop_event.wait(self.error_backoff_seconds)
                continue
            self._stop_event.wait(self.poll_interval_seconds)
        logger.info("Verification worker stopped")

    def poll_once(self) -> int:
        """Receive and process one batch.

        Returns:
            Number of messages acknowledged (deleted) in this batch

        Raises:
            StorageError: If the queue can't be polled
        """
        messages = self.queue.receive(
            max_messages=self.batch_size,
            wait_seconds=self.wait_seconds,
            visibility_timeout=self.visibility_timeout,
        )
        return sum(1 for message in messages if self.process_message(message))

    def process_message(self, message: QueueMessage) -> bool:
        """Handle one message, absorbing failures.

        Returns:
            True if the message was acknowledged, False if it was left on
            the queue for redelivery
        """
        try:
            self.handle_message(message)
        except TransientProcessingError as e:
            logger.warning(
                f"Leaving message {message.message_id} for redelivery "
                f"(attempt {message.receive_count}): {e.message}"
            )
            return False
        except IdentityServiceError as e:
            logger.error(
                f"Failed to process message {message.message_id} "
                f"(attempt {message.receive_count}): {e.message}"
            )
            return False
        except Exception:
            logger.exception(
                f"Unexpected error processing message {message.message_id} "
                f"(attempt {message.receive_count})"
            )
            return False
        return True

    def handle_message(self, message: QueueMessage) -> IdentityDocument | None:
        """Verify the document a message refers to, then acknowledge it.

        Returns:
            The stored document, or None if it no longer exists

        Raises:
            TransientProcessingError: If the message body is unusable
            IdentityServiceError: If storage, the bus or the queue fails
        """
        job = VerificationJob.from_json(message.body)
        tenant = sanitize_log_value(job.tenant_id)

        with self.database.scope(job.tenant_id) as session:
            document = self.documents.get(session, job.document_id)
            if document is None:
                stored = None
            else:
                if document.verification_status == VerificationStatus.PENDING:
                    result = verify_document(
                        document.document_type,
                        document.extracted_fields,
                        today=self.today(),
                    )
                    stored = self.documents.record_verification(
                        session, document.id, result
                    )
                else:
                    stored = document
                patient_ref_id = self.patients.get_ref_id_for_document(
                    session, job.document_id
                )

        if stored is None:
            outcome = not_found_result()
            logger.warning(
                f"Discarding job for document {sanitize_log_value(job.document_id)} "
                f"(tenant {tenant}): {outcome.status.value}, {', '.join(outcome.issues)}"
            )
            self.queue.delete(message)
            return None

        if not patient_ref_id:
            raise TransientProcessingError(
                "Patient reference missing for document", stored.id
            )

        self.publisher.publish(
            IdentityDocumentVerified(
                document_id=stored.id,
                patient_ref_id=patient_ref_id,
                document_type=stored.document_type,
                verification_status=stored.verification_status,
            )
        )
        self.queue.delete(message)

        logger.info(
            f"Verified document {stored.id} for tenant {tenant}: "
            f"{stored.verification_status.value} ({stored.verification_confidence})"
        )
        return stored
