"""Tests for tenant-scoped data access."""

import sqlite3

import pytest

from conftest import PATIENT_A, TENANT_A, TENANT_B, seed_patient
from errors import StorageError, TenantContextError
from storage.database import TenantScopedDatabase
from storage.documents import PatientRepository
from tenancy import TenantSession, resolve_tenant_id


@pytest.fixture
def database(tmp_path):
    db = TenantScopedDatabase(str(tmp_path / "tenancy.db"))
    db.init_schema()
    return db


class TestResolveTenantId:
    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing_tenant_rejected(self, value):
        with pytest.raises(TenantContextError):
            resolve_tenant_id(value)

    @pytest.mark.parametrize("value", ["tenant a", "tenant;DROP", "a" * 65, "../etc"])
    def test_malformed_tenant_rejected(self, value):
        with pytest.raises(TenantContextError):
            resolve_tenant_id(value)

    def test_valid_tenant_is_stripped(self):
        assert resolve_tenant_id("  tenant-a ") == "tenant-a"


class TestTenantSession:
    """Queries fail closed unless they are tenant-scoped."""

    def test_query_without_tenant_predicate_refused(self, database):
        with database.scope(TENANT_A) as session:
            with pytest.raises(TenantContextError):
                session.fetch_all("SELECT * FROM patients")

    def test_mismatched_tenant_parameter_refused(self, database):
        with database.scope(TENANT_A) as session:
            with pytest.raises(TenantContextError):
                session.fetch_all(
                    "SELECT * FROM patients WHERE tenant_id = :tenant_id",
                    {"tenant_id": TENANT_B},
                )

    def test_session_tenant_is_injected(self, database):
        seed_patient_row(database, TENANT_A, "P-1")
        seed_patient_row(database, TENANT_B, "P-2")

        with database.scope(TENANT_A) as session:
            rows = session.fetch_all(
                "SELECT patient_ref_id FROM patients WHERE tenant_id = :tenant_id"
            )

        assert [row["patient_ref_id"] for row in rows] == ["P-1"]

    def test_closed_session_refuses_queries(self, database):
        with database.scope(TENANT_A) as session:
            pass

        assert session.is_closed
        with pytest.raises(TenantContextError):
            session.fetch_one("SELECT 1 WHERE :tenant_id IS NOT NULL")

    def test_session_requires_tenant(self):
        conn = sqlite3.connect(":memory:")
        try:
            with pytest.raises(TenantContextError):
                TenantSession(conn, "")
        finally:
            conn.close()


class TestScope:
    def test_scope_without_tenant_refused(self, database):
        with pytest.raises(TenantContextError):
            with database.scope(None):
                pass

    def test_commit_on_success(self, database):
        seed_patient_row(database, TENANT_A, "P-1")

        with database.scope(TENANT_A) as session:
            row = session.fetch_one(
                "SELECT COUNT(*) AS n FROM patients WHERE tenant_id = :tenant_id"
            )
        assert row["n"] == 1

    def test_rollback_on_error(self, database):
        with pytest.raises(RuntimeError):
            with database.scope(TENANT_A) as session:
                session.execute(
                    """
                    INSERT INTO patients (id, tenant_id, patient_ref_id, created_at)
                    VALUES ('p1', :tenant_id, 'P-1', '2025-01-01')
                    """
                )
                raise RuntimeError("boom")

        with database.scope(TENANT_A) as session:
            row = session.fetch_one(
                "SELECT COUNT(*) AS n FROM patients WHERE tenant_id = :tenant_id"
            )
        assert row["n"] == 0

    def test_sqlite_errors_become_storage_errors(self, database):
        with pytest.raises(StorageError):
            with database.scope(TENANT_A) as session:
                session.execute("SELECT * FROM no_such_table WHERE tenant_id = :tenant_id")

    def test_unavailable_database_is_storage_error(self, tmp_path):
        # A directory can't be opened as a database file
        broken = TenantScopedDatabase(str(tmp_path))
        with pytest.raises(StorageError):
            with broken.scope(TENANT_A) as session:
                session.fetch_one("SELECT 1 WHERE :tenant_id IS NOT NULL")

    def test_list_tenants_with_pending_documents(self, services, upload):
        upload()
        seed_patient(services, "tenant-c", "P-C")

        assert services.database.list_tenants_with_pending_documents() == [TENANT_A]


class TestCrossTenantReads:
    """A document created under one tenant is invisible to every other."""

    def test_get_document_from_other_tenant(self, services, upload):
        document_id = upload()

        with services.database.scope(TENANT_B) as session:
            assert services.documents.get(session, document_id) is None

    def test_list_for_same_ref_in_other_tenant(self, services, upload):
        upload()
        seed_patient(services, TENANT_B, PATIENT_A)

        with services.database.scope(TENANT_B) as session:
            assert services.documents.list_for_patient(session, PATIENT_A) == []

    def test_insert_for_other_tenants_patient_inserts_nothing(self, services, patients):
        patient_b = patients[TENANT_B]

        with services.database.scope(TENANT_A) as session:
            inserted = services.documents.insert_pending(
                session,
                document_id="doc-x",
                patient_id=patient_b.id,
                document_type="passport",
                blob_key="identity/tenant-a/doc-x.jpg",
                extracted_fields={},
            )

        assert inserted is False


def seed_patient_row(database, tenant_id, patient_ref_id):
    with database.scope(tenant_id) as session:
        PatientRepository().insert(session, patient_ref_id)
