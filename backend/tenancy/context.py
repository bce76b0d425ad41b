"""Tenant-scoped data access.

Every query against patient or document tables runs through a
``TenantSession`` bound to exactly one tenant. The session injects its own
tenant id into each query and refuses SQL that does not filter on it, so
an unscoped query fails closed instead of reading across tenants.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from typing import Any, Mapping

from errors import TenantContextError

logger = logging.getLogger(__name__)

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
TENANT_PLACEHOLDER = ":tenant_id"


def resolve_tenant_id(tenant_id: str | None) -> str:
    """Validate a tenant identifier before any data access uses it.

    Raises:
        TenantContextError: If the identifier is missing or malformed
    """
    if tenant_id is None or not str(tenant_id).strip():
        raise TenantContextError("Missing tenant context")
    value = str(tenant_id).strip()
    if not TENANT_ID_PATTERN.match(value):
        raise TenantContextError("Invalid tenant identifier")
    return value


class TenantSession:
    """A database session confined to a single tenant.

    Created by ``TenantScopedDatabase.scope()``; never shared between
    requests or jobs.
    """

    def __init__(self, conn: sqlite3.Connection, tenant_id: str) -> None:
        self._conn = conn
        self._tenant_id = resolve_tenant_id(tenant_id)
        self._closed = False

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> sqlite3.Cursor:
        """Execute a tenant-scoped statement.

        Args:
            sql: SQL using named parameters; must reference ``:tenant_id``
            params: Statement parameters (``tenant_id`` is injected)

        Raises:
            TenantContextError: If the session is closed, the statement is
                not tenant-scoped, or a different tenant id is supplied
        """
        if self._closed:
            raise TenantContextError("Tenant session is closed")
        if TENANT_PLACEHOLDER not in sql:
            raise TenantContextError("Refusing to run a query without a tenant predicate")

        bound = dict(params or {})
        supplied = bound.get("tenant_id")
        if supplied is not None and supplied != self._tenant_id:
            logger.warning("Rejected query with mismatched tenant id")
            raise TenantContextError("Tenant id does not match the session tenant")
        bound["tenant_id"] = self._tenant_id

        return self._conn.execute(sql, bound)

    def fetch_one(self, sql: str, params: Mapping[str, Any] | None = None) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    def fetch_all(self, sql: str, params: Mapping[str, Any] | None = None) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()
