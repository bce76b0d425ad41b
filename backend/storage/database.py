"""Relational store for patients, identity documents and audit entries.

Each ``scope()`` opens its own connection and transaction, so tenant
context can never leak between concurrent requests or jobs.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from errors import StorageError
from tenancy.context import TenantSession, resolve_tenant_id

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS patients (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        patient_ref_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (tenant_id, patient_ref_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS identity_documents (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        patient_id TEXT NOT NULL,
        document_type TEXT NOT NULL,
        blob_key TEXT NOT NULL,
        extracted_fields TEXT NOT NULL,
        verification_status TEXT NOT NULL DEFAULT 'pending',
        verification_confidence INTEGER,
        verification_issues TEXT,
        verified_at TEXT,
        last_enqueued_at TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (patient_id) REFERENCES patients(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_logs (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        action TEXT NOT NULL,
        actor TEXT,
        resource_type TEXT,
        resource_id TEXT,
        status TEXT NOT NULL DEFAULT 'success'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_patients_tenant_ref ON patients(tenant_id, patient_ref_id)",
    "CREATE INDEX IF NOT EXISTS idx_documents_tenant_patient ON identity_documents(tenant_id, patient_id)",
    "CREATE INDEX IF NOT EXISTS idx_documents_status_enqueued ON identity_documents(verification_status, last_enqueued_at)",
    "CREATE INDEX IF NOT EXISTS idx_audit_tenant_time ON audit_logs(tenant_id, timestamp)",
)


class TenantScopedDatabase:
    """SQLite-backed relational store that only hands out tenant sessions."""

    def __init__(self, db_path: str) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_schema(self) -> None:
        """Create tables and indices if they don't exist."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = self._connect()
            try:
                for statement in SCHEMA_STATEMENTS:
                    conn.execute(statement)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to initialize relational store: {e}") from e
        logger.info("Relational store schema ready")

    @contextmanager
    def scope(self, tenant_id: str | None) -> Iterator[TenantSession]:
        """Open a transaction confined to one tenant.

        Commits when the block completes, rolls back on any exception, and
        always closes the session and connection.

        Raises:
            TenantContextError: If the tenant id is missing or invalid
            StorageError: If the relational store fails
        """
        tenant = resolve_tenant_id(tenant_id)
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StorageError(f"Relational store unavailable: {e}") from e

        session = TenantSession(conn, tenant)
        try:
            yield session
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Relational store error: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            session.close()
            conn.close()

    def list_tenants_with_pending_documents(self) -> list[str]:
        """List tenant ids that still have pending documents.

        System-level read used by the reconciliation sweep. It returns tenant
        identifiers only; document access still goes through ``scope()``.
        """
        try:
            conn = self._connect()
            try:
                rows = conn.execute(
                    """
                    SELECT DISTINCT tenant_id FROM identity_documents
                    WHERE verification_status = 'pending'
                    ORDER BY tenant_id
                    """
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Relational store error: {e}") from e
        return [row["tenant_id"] for row in rows]
