"""Blob store adapters for raw document payloads.

Document bytes are write-once: they are stored at upload and never
modified by verification. Retrieval goes through short-lived signed URLs.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from errors import NotFoundError, StorageError
from security.field_cipher import FieldCipher

logger = logging.getLogger(__name__)


def document_blob_key(tenant_id: str, document_id: str) -> str:
    """Blob key for a document, namespaced by tenant."""
    return f"identity/{tenant_id}/{document_id}.jpg"


class BlobStore(ABC):
    """Abstract base class for PHI blob storage."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "image/jpeg") -> None:
        """Store a payload under ``key``.

        Raises:
            StorageError: If the store is unavailable or the key exists
        """

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Read a payload.

        Raises:
            NotFoundError: If no payload exists under ``key``
            StorageError: If the store is unavailable
        """

    @abstractmethod
    def generate_download_url(self, key: str, expires_in: int) -> str:
        """Return a signed URL that expires after ``expires_in`` seconds."""

    def close(self) -> None:
        """Release client resources."""


class S3BlobStore(BlobStore):
    """PHI bucket on AWS S3 (or an S3-compatible endpoint).

    Objects are written with KMS server-side encryption.
    """

    def __init__(
        self,
        bucket: str,
        region: str | None = None,
        kms_key_id: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise ValueError("Bucket name is required")
        self.bucket = bucket
        self.kms_key_id = kms_key_id

        if client is None:
            client_kwargs: dict[str, Any] = {"service_name": "s3"}
            if region:
                client_kwargs["region_name"] = region
            # Custom endpoint (for S3-compatible services like MinIO)
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client(**client_kwargs)
        self._client = client

    def put(self, key: str, data: bytes, content_type: str = "image/jpeg") -> None:
        put_kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
            "ServerSideEncryption": "aws:kms",
        }
        if self.kms_key_id:
            put_kwargs["SSEKMSKeyId"] = self.kms_key_id
        try:
            self._client.put_object(**put_kwargs)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to store document blob: {e}", key) from e

    def get(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise NotFoundError("Document blob not found", key) from e
            raise StorageError(f"Failed to read document blob: {e}", key) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read document blob: {e}", key) from e

    def generate_download_url(self, key: str, expires_in: int) -> str:
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to sign download URL: {e}", key) from e


class LocalBlobStore(BlobStore):
    """Filesystem blob store for local development and tests.

    Download URLs point at the API's ``/blobs/{token}`` route; the token is
    a Fernet token carrying the blob key and validated against the TTL.
    """

    def __init__(self, root: str, cipher: FieldCipher, public_base_url: str) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.cipher = cipher
        self.public_base_url = public_base_url.rstrip("/")

    def _path_for(self, key: str) -> Path:
        if not key or key.startswith("/") or ".." in key.split("/"):
            raise StorageError("Invalid blob key", key)
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError("Invalid blob key", key)
        return path

    def put(self, key: str, data: bytes, content_type: str = "image/jpeg") -> None:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # "xb" refuses to overwrite: blobs are write-once
            with open(path, "xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise StorageError("Blob already exists", key) from e
        except OSError as e:
            raise StorageError(f"Failed to store document blob: {e}", key) from e

    def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError("Document blob not found", key) from e
        except OSError as e:
            raise StorageError(f"Failed to read document blob: {e}", key) from e

    def generate_download_url(self, key: str, expires_in: int) -> str:
        self._path_for(key)
        token = self.cipher.issue_token(f"{expires_in}:{key}")
        return f"{self.public_base_url}/blobs/{quote(token, safe='')}"

    def resolve_download_token(self, token: str, max_ttl_seconds: int) -> str:
        """Return the blob key for a download token that is still valid.

        Raises:
            NotFoundError: If the token is invalid or expired
        """
        value = self.cipher.read_token(token, max_ttl_seconds)
        if value is None:
            raise NotFoundError("Download link invalid or expired")
        ttl_text, _, key = value.partition(":")
        # Re-check against the TTL the URL was issued with
        if not ttl_text.isdigit() or self.cipher.read_token(token, int(ttl_text)) is None:
            raise NotFoundError("Download link invalid or expired")
        return key
