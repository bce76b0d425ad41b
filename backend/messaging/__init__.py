"""Verification queue and PHI-safe event bus adapters."""

from .events import (
    EventBridgePublisher,
    EventPublisher,
    IdentityDocumentUploaded,
    IdentityDocumentVerified,
    InMemoryEventPublisher,
    PHISafeEvent,
)
from .queue import (
    InMemoryVerificationQueue,
    QueueMessage,
    SQSVerificationQueue,
    VerificationJob,
    VerificationQueue,
)

__all__ = [
    "EventBridgePublisher",
    "EventPublisher",
    "IdentityDocumentUploaded",
    "IdentityDocumentVerified",
    "InMemoryEventPublisher",
    "PHISafeEvent",
    "InMemoryVerificationQueue",
    "QueueMessage",
    "SQSVerificationQueue",
    "VerificationJob",
    "VerificationQueue",
]
