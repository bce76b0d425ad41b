"""PHI-safe domain events.

Event bodies are pydantic models with ``extra="forbid"``: only identifiers
and enum values declared on the model can be emitted. Extracted field
values, images and internal patient ids have no slot to travel in.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, ClassVar, Literal

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict, Field

from errors import StorageError
from verification.models import VerificationStatus

logger = logging.getLogger(__name__)

DEFAULT_EVENT_SOURCE = "advancia.identity"


class PHISafeEvent(BaseModel):
    """Base class for events published to the bus."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    detail_type: ClassVar[str] = ""

    def detail(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class IdentityDocumentUploaded(PHISafeEvent):
    detail_type: ClassVar[str] = "IdentityDocumentUploaded"

    document_id: str
    patient_ref_id: str
    document_type: str
    status: Literal["stored"] = "stored"


class IdentityDocumentVerified(PHISafeEvent):
    detail_type: ClassVar[str] = "IdentityDocumentVerified"

    document_id: str
    patient_ref_id: str
    document_type: str
    verification_status: VerificationStatus
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class EventPublisher(ABC):
    """Abstract base class for the domain event bus."""

    @abstractmethod
    def publish(self, event: PHISafeEvent) -> None:
        """Publish one event.

        Raises:
            StorageError: If the bus rejects or cannot accept the event
        """

    def close(self) -> None:
        """Release client resources."""


class EventBridgePublisher(EventPublisher):
    """Publishes events to an AWS EventBridge bus."""

    def __init__(
        self,
        event_bus_name: str,
        source: str = DEFAULT_EVENT_SOURCE,
        region: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
    ) -> None:
        self.event_bus_name = event_bus_name
        self.source = source

        if client is None:
            client_kwargs: dict[str, Any] = {"service_name": "events"}
            if region:
                client_kwargs["region_name"] = region
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client(**client_kwargs)
        self._client = client

    def publish(self, event: PHISafeEvent) -> None:
        entry = {
            "Source": self.source,
            "DetailType": event.detail_type,
            "Detail": event.model_dump_json(),
            "EventBusName": self.event_bus_name,
        }
        try:
            response = self._client.put_events(Entries=[entry])
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to publish {event.detail_type}: {e}") from e

        if response.get("FailedEntryCount", 0):
            codes = [
                e.get("ErrorCode", "unknown")
                for e in response.get("Entries", [])
                if e.get("ErrorCode")
            ]
            raise StorageError(
                f"Event bus rejected {event.detail_type}: {', '.join(codes) or 'unknown'}"
            )


class InMemoryEventPublisher(EventPublisher):
    """Collects events in process for local development and tests."""

    def __init__(self) -> None:
        self._events: list[PHISafeEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: PHISafeEvent) -> None:
        with self._lock:
            self._events.append(event)
        logger.info(f"Published {event.detail_type} for document {getattr(event, 'document_id', '?')}")

    @property
    def events(self) -> list[PHISafeEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, detail_type: str) -> list[PHISafeEvent]:
        return [event for event in self.events if event.detail_type == detail_type]
