"""Verification queue: durable, at-least-once delivery of verification jobs.

A received message stays invisible to other consumers for the visibility
timeout. If it isn't deleted before the window closes it is delivered
again; that redelivery is the only retry mechanism in the pipeline.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from errors import StorageError, TransientProcessingError

logger = logging.getLogger(__name__)

DEFAULT_VISIBILITY_TIMEOUT = 300  # 5 minutes


@dataclass(frozen=True)
class VerificationJob:
    """Queue payload handed from the ingest service to the worker."""

    document_id: str
    patient_id: str
    document_type: str
    tenant_id: str

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, body: str | None) -> "VerificationJob":
        """Parse a message body.

        Raises:
            TransientProcessingError: If the body is empty or malformed
        """
        if not body:
            raise TransientProcessingError("Empty message body")
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise TransientProcessingError(f"Malformed message body: {e.msg}") from e
        if not isinstance(payload, dict):
            raise TransientProcessingError("Message body is not an object")

        missing = [
            name
            for name in ("document_id", "patient_id", "document_type", "tenant_id")
            if not isinstance(payload.get(name), str) or not payload.get(name)
        ]
        if missing:
            raise TransientProcessingError(f"Message missing fields: {', '.join(missing)}")
        return cls(
            document_id=payload["document_id"],
            patient_id=payload["patient_id"],
            document_type=payload["document_type"],
            tenant_id=payload["tenant_id"],
        )


@dataclass(frozen=True)
class QueueMessage:
    """A received message; ``receipt_handle`` identifies this delivery."""

    message_id: str
    body: str
    receipt_handle: str
    receive_count: int = 1


class VerificationQueue(ABC):
    """Abstract base class for the verification job queue."""

    @abstractmethod
    def send(self, job: VerificationJob) -> str:
        """Enqueue a job and return the message id.

        Raises:
            StorageError: If the queue is unavailable
        """

    @abstractmethod
    def receive(
        self,
        max_messages: int = 10,
        wait_seconds: int = 20,
        visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT,
    ) -> list[QueueMessage]:
        """Long-poll for up to ``max_messages`` messages."""

    @abstractmethod
    def delete(self, message: QueueMessage) -> None:
        """Acknowledge a message so it is not delivered again."""

    def close(self) -> None:
        """Release client resources."""


class SQSVerificationQueue(VerificationQueue):
    """Verification queue backed by AWS SQS."""

    def __init__(
        self,
        queue_url: str,
        region: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
    ) -> None:
        if not queue_url:
            raise ValueError("Queue URL is required")
        self.queue_url = queue_url

        if client is None:
            client_kwargs: dict[str, Any] = {"service_name": "sqs"}
            if region:
                client_kwargs["region_name"] = region
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client(**client_kwargs)
        self._client = client

    def send(self, job: VerificationJob) -> str:
        try:
            response = self._client.send_message(
                QueueUrl=self.queue_url,
                MessageBody=job.to_json(),
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to enqueue verification job: {e}", job.document_id) from e
        return response.get("MessageId", "")

    def receive(
        self,
        max_messages: int = 10,
        wait_seconds: int = 20,
        visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT,
    ) -> list[QueueMessage]:
        try:
            response = self._client.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=max_messages,
                WaitTimeSeconds=wait_seconds,
                VisibilityTimeout=visibility_timeout,
                AttributeNames=["ApproximateReceiveCount"],
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to receive verification jobs: {e}") from e

        messages = []
        for raw in response.get("Messages", []):
            attributes = raw.get("Attributes", {})
            messages.append(
                QueueMessage(
                    message_id=raw.get("MessageId", ""),
                    body=raw.get("Body", ""),
                    receipt_handle=raw["ReceiptHandle"],
                    receive_count=int(attributes.get("ApproximateReceiveCount", 1)),
                )
            )
        return messages

    def delete(self, message: QueueMessage) -> None:
        try:
            self._client.delete_message(
                QueueUrl=self.queue_url,
                ReceiptHandle=message.receipt_handle,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete message {message.message_id}: {e}") from e


@dataclass
class _StoredMessage:
    message_id: str
    body: str
    visible_at: float = 0.0
    receipt_handle: str | None = None
    receive_count: int = 0


class InMemoryVerificationQueue(VerificationQueue):
    """Thread-safe in-process queue with SQS-style visibility timeouts.

    Used for local development and tests. ``clock`` is injectable so tests
    can step past a visibility timeout without sleeping.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self.clock = clock or time.monotonic
        self._messages: list[_StoredMessage] = []
        self._condition = threading.Condition()

    def send(self, job: VerificationJob) -> str:
        message_id = str(uuid.uuid4())
        with self._condition:
            self._messages.append(_StoredMessage(message_id=message_id, body=job.to_json()))
            self._condition.notify_all()
        return message_id

    def send_raw(self, body: str) -> str:
        """Enqueue an arbitrary body (poison-message testing)."""
        message_id = str(uuid.uuid4())
        with self._condition:
            self._messages.append(_StoredMessage(message_id=message_id, body=body))
            self._condition.notify_all()
        return message_id

    def _take_visible(self, max_messages: int, visibility_timeout: int) -> list[QueueMessage]:
        now = self.clock()
        taken: list[QueueMessage] = []
        for stored in self._messages:
            if len(taken) >= max_messages:
                break
            if stored.visible_at > now:
                continue
            stored.receipt_handle = str(uuid.uuid4())
            stored.receive_count += 1
            stored.visible_at = now + visibility_timeout
            taken.append(
                QueueMessage(
                    message_id=stored.message_id,
                    body=stored.body,
                    receipt_handle=stored.receipt_handle,
                    receive_count=stored.receive_count,
                )
            )
        return taken

    def receive(
        self,
        max_messages: int = 10,
        wait_seconds: int = 20,
        visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT,
    ) -> list[QueueMessage]:
        deadline = time.monotonic() + max(wait_seconds, 0)
        with self._condition:
            while True:
                taken = self._take_visible(max_messages, visibility_timeout)
                remaining = deadline - time.monotonic()
                if taken or remaining <= 0:
                    return taken
                self._condition.wait(timeout=min(remaining, 0.5))

    def delete(self, message: QueueMessage) -> None:
        with self._condition:
            # A stale receipt handle (message since redelivered) deletes nothing
            self._messages = [
                stored
                for stored in self._messages
                if stored.receipt_handle != message.receipt_handle
            ]

    @property
    def depth(self) -> int:
        """Number of messages not yet deleted (visible or in flight)."""
        with self._condition:
            return len(self._messages)

    def bodies(self) -> list[str]:
        with self._condition:
            return [stored.body for stored in self._messages]
