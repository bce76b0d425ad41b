"""Audit logging routes for HIPAA compliance.

Lists the caller tenant's PHI access entries (uploads, metadata reads,
listings and download-URL issuance), newest first. Entries hold
identifiers only.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from .dependencies import CallerContext, get_services, require_tenant

router = APIRouter(prefix="/audit", tags=["audit"])

MAX_AUDIT_PAGE = 500


class AuditLogEntry(BaseModel):
    """Single audit log entry."""

    id: str
    timestamp: str
    action: str
    actor: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    status: str = "success"


class AuditLogListResponse(BaseModel):
    """Response for audit log listing."""

    entries: list[AuditLogEntry]
    limit: int
    filters_applied: dict[str, str]


@router.get("", response_model=AuditLogListResponse)
def list_audit_logs(
    request: Request,
    limit: int = Query(100, ge=1, le=MAX_AUDIT_PAGE, description="Max entries to return"),
    action: str | None = Query(None, description="Filter by action type"),
    caller: CallerContext = Depends(require_tenant),
) -> AuditLogListResponse:
    """List audit log entries for the caller's tenant."""
    services = get_services(request)
    with services.database.scope(caller.tenant_id) as session:
        entries = services.audit.list_entries(session, limit=limit, action=action)

    filters = {"action": action} if action else {}
    return AuditLogListResponse(
        entries=[AuditLogEntry(**asdict(entry)) for entry in entries],
        limit=limit,
        filters_applied=filters,
    )
