"""Tenant isolation for all patient and document data access."""

from .context import TenantSession, resolve_tenant_id

__all__ = ["TenantSession", "resolve_tenant_id"]
