"""Shared FastAPI dependencies for the identity API."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from bootstrap import Services

# Per-client limits on write endpoints; enabled/disabled from settings in create_app()
limiter = Limiter(key_func=get_remote_address)


@dataclass(frozen=True)
class CallerContext:
    tenant_id: str
    actor: str


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_tenant(
    request: Request,
    x_tenant_id: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
) -> CallerContext:
    """Authenticate the caller and bind the request to its tenant.

    Raises:
        TenantContextError: Missing or invalid ``X-Tenant-ID`` (400)
        AuthenticationError: Missing or unknown API key (401)
        AuthorizationError: API key issued to another tenant (403)
    """
    authenticator = get_services(request).authenticator
    tenant_id = authenticator.authenticate(authorization, x_tenant_id)
    return CallerContext(tenant_id=tenant_id, actor=authenticator.actor_for(authorization))
