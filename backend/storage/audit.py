"""Audit trail for PHI access (HIPAA).

Entries carry identifiers only: the action, who performed it, and which
resource it touched. Never field values or document contents.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from tenancy.context import TenantSession

from .models import AuditEntry


class AuditAction(str, Enum):
    """Types of auditable actions."""

    DOCUMENT_UPLOAD = "identity.upload"
    DOCUMENT_VIEW = "identity.view"
    DOCUMENT_LIST = "identity.list"
    DOCUMENT_DOWNLOAD_URL = "identity.download_url"


class AuditLogRepository:
    def record(
        self,
        session: TenantSession,
        action: AuditAction | str,
        actor: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        status: str = "success",
    ) -> str:
        """Log an audit event and return its id."""
        audit_id = str(uuid.uuid4())
        session.execute(
            """
            INSERT INTO audit_logs (
                id, tenant_id, timestamp, action, actor,
                resource_type, resource_id, status
            ) VALUES (
                :id, :tenant_id, :timestamp, :action, :actor,
                :resource_type, :resource_id, :status
            )
            """,
            {
                "id": audit_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "action": action.value if isinstance(action, AuditAction) else action,
                "actor": actor,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "status": status,
            },
        )
        return audit_id

    def list_entries(
        self,
        session: TenantSession,
        limit: int = 100,
        action: str | None = None,
    ) -> list[AuditEntry]:
        sql = "SELECT * FROM audit_logs WHERE tenant_id = :tenant_id"
        params: dict[str, object] = {"limit": limit}
        if action:
            sql += " AND action = :action"
            params["action"] = action
        sql += " ORDER BY timestamp DESC, id LIMIT :limit"
        return [AuditEntry(**dict(row)) for row in session.fetch_all(sql, params)]
