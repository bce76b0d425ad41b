"""Error taxonomy for the identity document pipeline.

Ingest failures are synchronous and caller-visible; the HTTP layer maps
each class to a status code. ``TransientProcessingError`` never leaves the
worker: it is absorbed by leaving the queue message unacknowledged.
"""

from __future__ import annotations


class IdentityServiceError(Exception):
    """Base exception for identity pipeline errors."""

    status_code = 500

    def __init__(self, message: str, resource_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id


class ValidationError(IdentityServiceError):
    """Missing or malformed request fields."""

    status_code = 400


class TenantContextError(IdentityServiceError):
    """A data access was attempted without a valid tenant context."""

    status_code = 400


class AuthenticationError(IdentityServiceError):
    """Missing or unknown credentials."""

    status_code = 401


class AuthorizationError(IdentityServiceError):
    """Credentials are valid but not for the requested tenant."""

    status_code = 403


class NotFoundError(IdentityServiceError):
    """Unknown patient/document/tenant combination."""

    status_code = 404


class StorageError(IdentityServiceError):
    """Blob store, relational store, queue or event bus unavailable."""

    status_code = 500


class TransientProcessingError(IdentityServiceError):
    """Failure while handling a queue message; resolved by redelivery."""

    pass
