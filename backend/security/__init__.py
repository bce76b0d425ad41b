"""Authentication and PHI encryption."""

from .auth import ApiKeyAuthenticator
from .field_cipher import FieldCipher

__all__ = ["ApiKeyAuthenticator", "FieldCipher"]
