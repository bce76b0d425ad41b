"""Encryption for PHI held outside the blob store.

Uses Fernet symmetric encryption for:
- extracted document fields persisted in the relational store
- short-lived download tokens issued by the local blob backend

Environment variable PHI_FIELD_ENCRYPTION_KEY should be set with a valid
Fernet key. Generate with:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import base64
import json
import logging
from datetime import date
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "fernet:"

# HKDF context for the download-token key; never used for field encryption
TOKEN_KEY_INFO = b"identity-download-token"


def _json_default(value: Any) -> str:
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Unsupported field value type: {type(value).__name__}")


def derive_token_key(encryption_key: str) -> bytes:
    """Derive the Fernet key used for download tokens from the field key."""
    derived = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=TOKEN_KEY_INFO,
    ).derive(base64.urlsafe_b64decode(encryption_key.encode()))
    return base64.urlsafe_b64encode(derived)


class FieldCipher:
    """Encrypts extracted fields at rest and signs download tokens.

    Download tokens use a key derived from the field key with HKDF, so a
    token can never be decrypted as a stored field or the other way round.
    Without a configured key, fields are stored as plain JSON and download
    tokens are signed with a per-process key (they stop validating after a
    restart, which only shortens their already short lifetime).
    """

    def __init__(self, encryption_key: str | None = None) -> None:
        """Initialize the cipher.

        Args:
            encryption_key: Fernet key; empty disables at-rest encryption

        Raises:
            ValueError: If the key is not a valid Fernet key
        """
        self._fernet: Fernet | None = None
        if encryption_key:
            try:
                self._fernet = Fernet(encryption_key.encode())
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid PHI field encryption key: {e}") from None
        else:
            logger.warning(
                "PHI_FIELD_ENCRYPTION_KEY not set - extracted fields stored unencrypted"
            )
        # Tokens never share a key with stored fields
        self._token_fernet = Fernet(
            derive_token_key(encryption_key) if self._fernet else Fernet.generate_key()
        )

    @property
    def encryption_enabled(self) -> bool:
        """Check if at-rest encryption is configured."""
        return self._fernet is not None

    def encrypt_fields(self, fields: dict[str, Any]) -> str:
        """Serialize extracted fields for storage."""
        payload = json.dumps(fields, default=_json_default, sort_keys=True)
        if not self._fernet:
            return payload
        return ENCRYPTED_PREFIX + self._fernet.encrypt(payload.encode()).decode()

    def decrypt_fields(self, stored: str | None) -> dict[str, Any]:
        """Deserialize extracted fields read from storage.

        Raises:
            ValueError: If the value is encrypted and cannot be decrypted
        """
        if not stored:
            return {}
        if stored.startswith(ENCRYPTED_PREFIX):
            if not self._fernet:
                raise ValueError("Encrypted fields found but no encryption key configured")
            try:
                stored = self._fernet.decrypt(stored[len(ENCRYPTED_PREFIX):].encode()).decode()
            except InvalidToken:
                raise ValueError("Invalid encrypted fields or wrong key") from None
        return json.loads(stored)

    def issue_token(self, value: str) -> str:
        """Issue an opaque, timestamped token carrying ``value``."""
        return self._token_fernet.encrypt(value.encode()).decode()

    def read_token(self, token: str, ttl_seconds: int) -> str | None:
        """Return the token's value, or None if invalid or older than the TTL."""
        try:
            return self._token_fernet.decrypt(token.encode(), ttl=ttl_seconds).decode()
        except (InvalidToken, ValueError):
            return None
