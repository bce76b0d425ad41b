"""Shared configuration for the identity document pipeline.

This module centralizes environment variable access and default values
so the API process and the worker process read the same settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

# Signed download URLs must stay short-lived (minutes, not hours)
MAX_DOWNLOAD_URL_TTL_SECONDS = 900

DEFAULT_UPLOAD_RATE_LIMIT = "30/minute"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def parse_api_keys(raw: str | None) -> dict[str, str]:
    """Parse ``tenant:key,tenant:key`` into a key -> tenant mapping."""
    api_keys: dict[str, str] = {}
    if not raw:
        return api_keys
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        tenant_id, sep, key = entry.partition(":")
        if not sep or not tenant_id.strip() or not key.strip():
            raise ValueError("IDENTITY_API_KEYS entries must look like tenant:key")
        api_keys[key.strip()] = tenant_id.strip()
    return api_keys


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the API and worker processes."""

    db_path: str = "./data/identity.db"

    # Blob storage
    blob_backend: str = "local"
    blob_local_root: str = "./data/blobs"
    phi_bucket: str = ""
    phi_kms_key_id: str = ""
    aws_region: str = "us-east-1"
    aws_endpoint_url: str = ""

    # Queue / events
    queue_url: str = ""
    event_backend: str = "eventbridge"
    event_bus_name: str = "health-events-bus"
    event_source: str = "advancia.identity"

    # HTTP surface
    public_base_url: str = "http://localhost:3006"
    download_url_ttl_seconds: int = 300
    max_upload_bytes: int = 10 * 1024 * 1024
    rate_limit_enabled: bool = True
    api_keys: dict[str, str] = field(default_factory=dict)

    # Security
    field_encryption_key: str = ""

    # Worker
    worker_batch_size: int = 10
    worker_wait_seconds: int = 20
    worker_visibility_timeout: int = 300
    worker_poll_interval_seconds: int = 1
    worker_error_backoff_seconds: int = 5

    # Reconciliation sweep
    reconcile_interval_seconds: int = 600
    reconcile_stale_after_seconds: int = 900

    def __post_init__(self) -> None:
        if self.blob_backend not in ("local", "s3"):
            raise ValueError(f"Unsupported BLOB_BACKEND: {self.blob_backend}")
        if self.event_backend not in ("eventbridge", "memory"):
            raise ValueError(f"Unsupported EVENT_BACKEND: {self.event_backend}")
        if self.blob_backend == "s3" and not self.phi_bucket:
            raise ValueError("PHI_BUCKET is required when BLOB_BACKEND=s3")
        if not 0 < self.download_url_ttl_seconds <= MAX_DOWNLOAD_URL_TTL_SECONDS:
            raise ValueError(
                f"DOWNLOAD_URL_TTL_SECONDS must be between 1 and "
                f"{MAX_DOWNLOAD_URL_TTL_SECONDS}"
            )
        if not 1 <= self.worker_batch_size <= 10:
            raise ValueError("WORKER_BATCH_SIZE must be between 1 and 10")
        if self.max_upload_bytes <= 0:
            raise ValueError("MAX_UPLOAD_BYTES must be positive")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=os.getenv("DB_PATH", "./data/identity.db"),
            blob_backend=os.getenv("BLOB_BACKEND", "local"),
            blob_local_root=os.getenv("BLOB_LOCAL_ROOT", "./data/blobs"),
            phi_bucket=os.getenv("PHI_BUCKET", ""),
            phi_kms_key_id=os.getenv("PHI_KMS_KEY_ID", ""),
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            aws_endpoint_url=os.getenv("AWS_ENDPOINT_URL", ""),
            queue_url=os.getenv("IDENTITY_VERIFICATION_QUEUE_URL", ""),
            event_backend=os.getenv("EVENT_BACKEND", "eventbridge"),
            event_bus_name=os.getenv("EVENT_BUS_NAME", "health-events-bus"),
            event_source=os.getenv("EVENT_SOURCE", "advancia.identity"),
            public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:3006"),
            download_url_ttl_seconds=_env_int("DOWNLOAD_URL_TTL_SECONDS", 300),
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", True),
            api_keys=parse_api_keys(os.getenv("IDENTITY_API_KEYS")),
            field_encryption_key=os.getenv("PHI_FIELD_ENCRYPTION_KEY", ""),
            worker_batch_size=_env_int("WORKER_BATCH_SIZE", 10),
            worker_wait_seconds=_env_int("WORKER_WAIT_SECONDS", 20),
            worker_visibility_timeout=_env_int("WORKER_VISIBILITY_TIMEOUT", 300),
            worker_poll_interval_seconds=_env_int("WORKER_POLL_INTERVAL_SECONDS", 1),
            worker_error_backoff_seconds=_env_int("WORKER_ERROR_BACKOFF_SECONDS", 5),
            reconcile_interval_seconds=_env_int("RECONCILE_INTERVAL_SECONDS", 600),
            reconcile_stale_after_seconds=_env_int(
                "RECONCILE_STALE_AFTER_SECONDS", 900
            ),
        )


def upload_rate_limit() -> str:
    """Rate limit for uploads, read per request so it can be tuned live."""
    return os.getenv("UPLOAD_RATE_LIMIT", DEFAULT_UPLOAD_RATE_LIMIT)
