"""Tests for the verification worker."""

import logging
import signal
import threading
import time
from unittest.mock import MagicMock

import pytest

from conftest import PATIENT_A, TENANT_A
from errors import StorageError
from identity.worker import IdentityVerificationWorker
from messaging import IdentityDocumentVerified, VerificationJob
from verification import VerificationResult, VerificationStatus


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyPublisher:
    """Fails the first ``failures`` publishes, then delegates."""

    def __init__(self, delegate, failures: int = 1):
        self.delegate = delegate
        self.failures = failures

    def publish(self, event):
        if self.failures > 0:
            self.failures -= 1
            raise StorageError("event bus unavailable")
        self.delegate.publish(event)


class StopOnFirstPublish:
    """Requests a worker stop on the first publish, then delegates."""

    def __init__(self, worker, delegate):
        self.worker = worker
        self.delegate = delegate
        self.calls = 0

    def publish(self, event):
        self.calls += 1
        if self.calls == 1:
            self.worker.stop()
        self.delegate.publish(event)


def read_row(services, document_id):
    with services.database.scope(TENANT_A) as session:
        row = session.fetch_one(
            "SELECT * FROM identity_documents WHERE tenant_id = :tenant_id AND id = :id",
            {"id": document_id},
        )
    return dict(row)


class TestVerificationScenarios:
    @pytest.mark.parametrize(
        "document_type,fields,status,confidence",
        [
            (
                "drivers_license",
                {"document_number": "DL1", "expiration_date": "2099-01-01", "issuing_state": "CA"},
                VerificationStatus.VERIFIED,
                100,
            ),
            (
                "drivers_license",
                {"document_number": "DL1", "expiration_date": "2099-01-01"},
                VerificationStatus.VERIFIED,
                90,
            ),
            ("passport", {"expiration_date": "2099-01-01"}, VerificationStatus.NEEDS_REVIEW, 70),
            (
                "passport",
                {"expiration_date": "2000-01-01", "passport_number": "P1", "issuing_country": "US"},
                VerificationStatus.EXPIRED,
                100,
            ),
            ("library_card", {}, VerificationStatus.NEEDS_REVIEW, 50),
        ],
    )
    def test_end_to_end(self, services, worker, upload, document_type, fields, status, confidence):
        document_id = upload(document_type=document_type, extracted_fields=fields)

        assert worker.poll_once() == 1

        document = services.ingest.get_document(TENANT_A, document_id)
        assert document.verification_status == status
        assert document.verification_confidence == confidence
        assert document.verified_at is not None
        assert services.queue.depth == 0

    def test_verified_event_published(self, services, worker, upload):
        document_id = upload(
            extracted_fields={"document_number": "DL1", "expiration_date": "2099-01-01", "issuing_state": "CA"}
        )

        worker.poll_once()

        events = services.publisher.of_type("IdentityDocumentVerified")
        assert len(events) == 1
        event = events[0]
        assert isinstance(event, IdentityDocumentVerified)
        assert event.document_id == document_id
        assert event.patient_ref_id == PATIENT_A
        assert event.document_type == "drivers_license"
        assert event.verification_status == VerificationStatus.VERIFIED
        assert set(event.detail()) == {
            "document_id",
            "patient_ref_id",
            "document_type",
            "verification_status",
            "timestamp",
        }
        assert "DL1" not in event.model_dump_json()


class TestAtLeastOnce:
    def test_crash_before_ack_redelivers_to_same_row(self, services, worker, upload):
        """DB written, then failure before delete: redelivery converges."""
        clock = FakeClock()
        services.queue.clock = clock
        worker.publisher = FlakyPublisher(services.publisher, failures=1)
        document_id = upload(extracted_fields={"expiration_date": "2099-01-01"})

        assert worker.poll_once() == 0
        first = read_row(services, document_id)
        assert first["verification_status"] == "needs_review"
        assert services.queue.depth == 1

        # Hidden until the visibility timeout passes
        assert worker.poll_once() == 0
        clock.advance(worker.visibility_timeout + 1)

        assert worker.poll_once() == 1
        assert read_row(services, document_id) == first
        assert services.queue.depth == 0
        assert len(services.publisher.of_type("IdentityDocumentVerified")) == 1

    def test_duplicate_job_leaves_row_unchanged(self, services, worker, patients, upload):
        document_id = upload(document_type="passport", extracted_fields={"expiration_date": "2099-01-01"})
        worker.poll_once()
        after_first = read_row(services, document_id)

        for _ in range(3):
            services.queue.send(
                VerificationJob(
                    document_id=document_id,
                    patient_id=patients[TENANT_A].id,
                    document_type="passport",
                    tenant_id=TENANT_A,
                )
            )
            assert worker.poll_once() == 1

        assert read_row(services, document_id) == after_first
        statuses = {e.verification_status for e in services.publisher.of_type("IdentityDocumentVerified")}
        assert statuses == {VerificationStatus.NEEDS_REVIEW}

    def test_terminal_status_never_overwritten(self, services, worker, upload):
        document_id = upload(extracted_fields={"expiration_date": "2000-01-01"})
        worker.poll_once()

        with services.database.scope(TENANT_A) as session:
            stored = services.documents.record_verification(
                session,
                document_id,
                VerificationResult(status=VerificationStatus.PENDING, confidence=0),
            )

        assert stored.verification_status == VerificationStatus.EXPIRED
        assert stored.verification_confidence == 100


class TestFailureIsolation:
    def test_malformed_message_left_and_batch_continues(self, services, worker, upload):
        services.queue.send_raw("{not json")
        document_id = upload()

        assert worker.poll_once() == 1

        assert services.ingest.get_document(TENANT_A, document_id).verification_status != (
            VerificationStatus.PENDING
        )
        assert services.queue.bodies() == ["{not json"]

    def test_message_with_invalid_tenant_left(self, services, worker):
        services.queue.send(
            VerificationJob(
                document_id="doc-1", patient_id="p-1", document_type="passport", tenant_id="bad tenant"
            )
        )

        assert worker.poll_once() == 0
        assert services.queue.depth == 1

    def test_missing_document_is_acknowledged_without_event(self, services, worker, patients):
        services.queue.send(
            VerificationJob(
                document_id="does-not-exist",
                patient_id=patients[TENANT_A].id,
                document_type="passport",
                tenant_id=TENANT_A,
            )
        )

        assert worker.poll_once() == 1
        assert services.queue.depth == 0
        assert services.publisher.events == []

    def test_missing_document_logged_as_not_found(self, services, worker, patients, caplog):
        services.queue.send(
            VerificationJob(
                document_id="does-not-exist",
                patient_id=patients[TENANT_A].id,
                document_type="passport",
                tenant_id=TENANT_A,
            )
        )

        with caplog.at_level(logging.WARNING, logger="identity.worker"):
            worker.poll_once()

        assert "rejected, Document not found" in caplog.text
        assert "does-not-exist" in caplog.text

    def test_publish_failure_keeps_message(self, services, worker, upload):
        worker.publisher = MagicMock()
        worker.publisher.publish.side_effect = StorageError("bus down")
        upload()

        assert worker.poll_once() == 0
        assert services.queue.depth == 1

    def test_unexpected_exception_is_absorbed(self, services, worker, upload):
        worker.documents = MagicMock()
        worker.documents.get.side_effect = RuntimeError("surprise")
        upload()

        assert worker.poll_once() == 0
        assert services.queue.depth == 1


class TestRunLoop:
    def test_stop_before_run_returns_immediately(self, worker):
        worker.stop()
        worker.run()

        assert worker.is_stopping

    def test_poll_errors_back_off_and_continue(self, services):
        queue = MagicMock()
        worker = IdentityVerificationWorker(
            queue=queue,
            database=services.database,
            publisher=services.publisher,
            documents=services.documents,
            poll_interval_seconds=0,
            error_backoff_seconds=0,
        )

        def receive(**kwargs):
            if queue.receive.call_count == 1:
                raise StorageError("queue down")
            worker.stop()
            return []

        queue.receive.side_effect = receive
        worker.run()

        assert queue.receive.call_count == 2

    def test_background_run_drains_queue(self, services, worker, upload):
        worker.poll_interval_seconds = 0.01
        document_ids = [upload() for _ in range(3)]

        thread = threading.Thread(target=worker.run, daemon=True)
        thread.start()
        deadline = time.monotonic() + 5
        while services.queue.depth and time.monotonic() < deadline:
            time.sleep(0.01)
        worker.stop()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert services.queue.depth == 0
        for document_id in document_ids:
            document = services.ingest.get_document(TENANT_A, document_id)
            assert document.verification_status != VerificationStatus.PENDING

    def test_stop_mid_batch_finishes_received_messages(self, services, worker, upload):
        """Messages already received are processed and deleted after stop()."""
        document_ids = [upload() for _ in range(3)]
        worker.publisher = StopOnFirstPublish(worker, services.publisher)

        worker.run()

        assert worker.is_stopping
        assert worker.publisher.calls == 3
        assert services.queue.depth == 0
        assert len(services.publisher.of_type("IdentityDocumentVerified")) == 3
        for document_id in document_ids:
            document = services.ingest.get_document(TENANT_A, document_id)
            assert document.verification_status != VerificationStatus.PENDING

    def test_signal_handler_requests_stop(self, worker):
        original_term = signal.getsignal(signal.SIGTERM)
        original_int = signal.getsignal(signal.SIGINT)
        try:
            worker.install_signal_handlers()
            handler = signal.getsignal(signal.SIGTERM)
            handler(signal.SIGTERM, None)
        finally:
            signal.signal(signal.SIGTERM, original_term)
            signal.signal(signal.SIGINT, original_int)

        assert worker.is_stopping
