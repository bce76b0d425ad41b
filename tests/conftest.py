"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import sys
import tempfile
from datetime import date
from pathlib import Path
from typing import Iterator

import pytest

# Add backend to path for imports
backend_path = str(Path(__file__).parent.parent / "backend")
if backend_path not in sys.path:
    sys.path.insert(0, backend_path)

# Set test environment before importing app
_temp_dir = tempfile.mkdtemp(prefix="identity-tests-")
os.environ.setdefault("DB_PATH", os.path.join(_temp_dir, "identity.db"))
os.environ.setdefault("BLOB_LOCAL_ROOT", os.path.join(_temp_dir, "blobs"))
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["EVENT_BACKEND"] = "memory"
os.environ.pop("IDENTITY_VERIFICATION_QUEUE_URL", None)

from cryptography.fernet import Fernet  # noqa: E402

from bootstrap import Services, build_services  # noqa: E402
from config import Settings  # noqa: E402
from identity.worker import IdentityVerificationWorker  # noqa: E402
from storage.models import Patient  # noqa: E402

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"
API_KEY_A = "key-for-tenant-a"
API_KEY_B = "key-for-tenant-b"
PATIENT_A = "PAT-A-001"
PATIENT_B = "PAT-B-001"

# Fixed clock so expiration checks don't drift
TODAY = date(2025, 6, 1)

# Smallest valid JPEG header is enough; the pipeline never decodes images
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every backend at tmp_path / in-memory adapters."""
    return Settings(
        db_path=str(tmp_path / "identity.db"),
        blob_backend="local",
        blob_local_root=str(tmp_path / "blobs"),
        event_backend="memory",
        public_base_url="http://testserver",
        rate_limit_enabled=False,
        api_keys={API_KEY_A: TENANT_A, API_KEY_B: TENANT_B},
        field_encryption_key=Fernet.generate_key().decode(),
        worker_wait_seconds=0,
        worker_poll_interval_seconds=0,
        worker_error_backoff_seconds=0,
    )


@pytest.fixture
def services(settings: Settings) -> Iterator[Services]:
    built = build_services(settings)
    yield built
    built.close()


def seed_patient(services: Services, tenant_id: str, patient_ref_id: str) -> Patient:
    with services.database.scope(tenant_id) as session:
        return services.patients.insert(session, patient_ref_id)


@pytest.fixture
def patients(services: Services) -> dict[str, Patient]:
    """One patient in each tenant."""
    return {
        TENANT_A: seed_patient(services, TENANT_A, PATIENT_A),
        TENANT_B: seed_patient(services, TENANT_B, PATIENT_B),
    }


@pytest.fixture
def worker(services: Services) -> IdentityVerificationWorker:
    return IdentityVerificationWorker(
        queue=services.queue,
        database=services.database,
        publisher=services.publisher,
        documents=services.documents,
        patients=services.patients,
        wait_seconds=0,
        poll_interval_seconds=0,
        error_backoff_seconds=0,
        today=lambda: TODAY,
    )


@pytest.fixture
def upload(services: Services, patients: dict[str, Patient]):
    """Upload a document for tenant A's patient and return its id."""

    def _upload(
        document_type: str = "drivers_license",
        extracted_fields: dict | None = None,
        tenant_id: str = TENANT_A,
        patient_ref_id: str = PATIENT_A,
    ) -> str:
        result = services.ingest.upload_document(
            tenant_id=tenant_id,
            patient_ref_id=patient_ref_id,
            document_type=document_type,
            payload=JPEG_BYTES,
            extracted_fields=extracted_fields,
        )
        return result["document_id"]

    return _upload
