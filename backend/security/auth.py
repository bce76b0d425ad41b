"""API key authentication bound to tenants.

Each API key belongs to exactly one tenant. A request is authorized only
when its ``X-Tenant-ID`` matches the tenant that owns the presented key,
so a caller-supplied tenant id is never trusted on its own.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from errors import AuthenticationError, AuthorizationError
from tenancy.context import resolve_tenant_id

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
ANONYMOUS_ACTOR = "anonymous"


class ApiKeyAuthenticator:
    """Resolves bearer API keys to the tenant they were issued for."""

    def __init__(self, api_keys: dict[str, str]) -> None:
        """Initialize the authenticator.

        Args:
            api_keys: Mapping of API key -> tenant id
        """
        self._api_keys = dict(api_keys)
        if not self._api_keys:
            logger.warning("No API keys configured - all identity requests will be rejected")

    def _tenant_for_key(self, presented: str) -> str | None:
        tenant_id = None
        # Compare against every key so timing doesn't reveal a partial match
        for key, owner in self._api_keys.items():
            if hmac.compare_digest(key.encode(), presented.encode()):
                tenant_id = owner
        return tenant_id

    def authenticate(self, authorization: str | None, tenant_id: str | None) -> str:
        """Authorize a request for a tenant.

        Args:
            authorization: Raw ``Authorization`` header
            tenant_id: Raw ``X-Tenant-ID`` header

        Returns:
            The validated tenant id

        Raises:
            TenantContextError: If the tenant header is missing or invalid
            AuthenticationError: If credentials are missing or unknown
            AuthorizationError: If the key belongs to another tenant
        """
        tenant = resolve_tenant_id(tenant_id)

        if not authorization:
            raise AuthenticationError("Authorization header missing")
        if not authorization.startswith(BEARER_PREFIX):
            raise AuthenticationError("Invalid authentication scheme. Use Bearer token.")

        presented = authorization[len(BEARER_PREFIX):].strip()
        owner = self._tenant_for_key(presented) if presented else None
        if owner is None:
            raise AuthenticationError("Invalid API key")
        if owner != tenant:
            logger.warning("API key presented for a tenant it was not issued to")
            raise AuthorizationError("API key is not authorized for this tenant")
        return tenant

    @staticmethod
    def actor_for(authorization: str | None) -> str:
        """Audit actor for a request: a fingerprint of the key, never the key."""
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            return ANONYMOUS_ACTOR
        presented = authorization[len(BEARER_PREFIX):].strip()
        digest = hashlib.sha256(presented.encode()).hexdigest()
        return f"api_key:{digest[:12]}"
