"""Tests for the verification queue adapters."""

import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from errors import StorageError, TransientProcessingError
from messaging import InMemoryVerificationQueue, SQSVerificationQueue, VerificationJob

JOB = VerificationJob(
    document_id="doc-1", patient_id="pat-1", document_type="passport", tenant_id="tenant-a"
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestVerificationJob:
    def test_json_round_trip(self):
        assert VerificationJob.from_json(JOB.to_json()) == JOB

    def test_body_has_exactly_the_job_fields(self):
        assert set(json.loads(JOB.to_json())) == {
            "document_id",
            "patient_id",
            "document_type",
            "tenant_id",
        }

    @pytest.mark.parametrize(
        "body",
        ["", None, "{oops", "[1, 2]", json.dumps({"document_id": "d"}), json.dumps(
            {"document_id": "d", "patient_id": "p", "document_type": "passport", "tenant_id": 5}
        )],
    )
    def test_malformed_bodies(self, body):
        with pytest.raises(TransientProcessingError):
            VerificationJob.from_json(body)


class TestInMemoryQueue:
    def test_receive_hides_message_until_visibility_timeout(self):
        clock = FakeClock()
        queue = InMemoryVerificationQueue(clock=clock)
        queue.send(JOB)

        first = queue.receive(wait_seconds=0, visibility_timeout=30)
        assert len(first) == 1
        assert queue.receive(wait_seconds=0, visibility_timeout=30) == []

        clock.now = 31
        second = queue.receive(wait_seconds=0, visibility_timeout=30)
        assert len(second) == 1
        assert second[0].message_id == first[0].message_id
        assert second[0].receive_count == 2

    def test_delete_acknowledges(self):
        queue = InMemoryVerificationQueue()
        queue.send(JOB)

        [message] = queue.receive(wait_seconds=0)
        queue.delete(message)

        assert queue.depth == 0

    def test_stale_receipt_handle_deletes_nothing(self):
        clock = FakeClock()
        queue = InMemoryVerificationQueue(clock=clock)
        queue.send(JOB)

        [stale] = queue.receive(wait_seconds=0, visibility_timeout=10)
        clock.now = 11
        queue.receive(wait_seconds=0, visibility_timeout=10)
        queue.delete(stale)

        assert queue.depth == 1

    def test_max_messages(self):
        queue = InMemoryVerificationQueue()
        for _ in range(5):
            queue.send(JOB)

        assert len(queue.receive(max_messages=3, wait_seconds=0)) == 3
        assert len(queue.receive(max_messages=3, wait_seconds=0)) == 2

    def test_empty_receive_waits_then_returns(self):
        queue = InMemoryVerificationQueue()

        assert queue.receive(wait_seconds=0) == []


class TestSQSQueue:
    def test_send_uses_queue_url(self):
        client = MagicMock()
        client.send_message.return_value = {"MessageId": "m-1"}
        queue = SQSVerificationQueue("https://sqs.example/queue", client=client)

        assert queue.send(JOB) == "m-1"
        client.send_message.assert_called_once_with(
            QueueUrl="https://sqs.example/queue", MessageBody=JOB.to_json()
        )

    def test_receive_maps_messages(self):
        client = MagicMock()
        client.receive_message.return_value = {
            "Messages": [
                {
                    "MessageId": "m-1",
                    "Body": JOB.to_json(),
                    "ReceiptHandle": "rh-1",
                    "Attributes": {"ApproximateReceiveCount": "3"},
                }
            ]
        }
        queue = SQSVerificationQueue("https://sqs.example/queue", client=client)

        [message] = queue.receive(max_messages=10, wait_seconds=20, visibility_timeout=300)

        assert message.receipt_handle == "rh-1"
        assert message.receive_count == 3
        kwargs = client.receive_message.call_args.kwargs
        assert kwargs["MaxNumberOfMessages"] == 10
        assert kwargs["WaitTimeSeconds"] == 20
        assert kwargs["VisibilityTimeout"] == 300

    def test_delete_uses_receipt_handle(self):
        client = MagicMock()
        client.receive_message.return_value = {
            "Messages": [{"MessageId": "m-1", "Body": "{}", "ReceiptHandle": "rh-1"}]
        }
        queue = SQSVerificationQueue("https://sqs.example/queue", client=client)
        [message] = queue.receive()

        queue.delete(message)

        client.delete_message.assert_called_once_with(
            QueueUrl="https://sqs.example/queue", ReceiptHandle="rh-1"
        )

    def test_client_errors_become_storage_errors(self):
        client = MagicMock()
        client.send_message.side_effect = ClientError(
            {"Error": {"Code": "AWS.SimpleQueueService.NonExistentQueue", "Message": "nope"}},
            "SendMessage",
        )
        queue = SQSVerificationQueue("https://sqs.example/queue", client=client)

        with pytest.raises(StorageError):
            queue.send(JOB)

    def test_queue_url_required(self):
        with pytest.raises(ValueError):
            SQSVerificationQueue("", client=MagicMock())
