"""Symmetric encryption for OAuth tokens and app-registration secrets.

Values are encrypted with Fernet (AES-128-CBC + HMAC-SHA256). The Fernet key
is derived from ``settings.encryption_key`` with SHA-256, so any string can
be configured as the secret. Rotating the secret makes every stored token
undecryptable, which the token manager treats as a missing credential.
"""

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings


class EncryptionError(Exception):
    """Raised when encrypting or decrypting data fails."""


class Encryptor:
    """Encrypt and decrypt short strings with a key derived from a secret."""

    def __init__(self, secret: str):
        if not secret:
            raise EncryptionError("Encryption secret must not be empty")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, text: str) -> str:
        """Encrypt *text* returning a URL safe base64 string."""
        if text is None:
            raise ValueError("`text` must be a string, not None")
        return self._fernet.encrypt(text.encode("utf-8")).decode("utf-8")

    def decrypt(self, token: str) -> str:
        """Decrypt *token* returning the original string."""
        if not token:
            raise EncryptionError("Nothing to decrypt")
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            raise EncryptionError("Invalid encryption token") from exc


@lru_cache(maxsize=1)
def get_encryptor() -> Encryptor:
    """Encryptor built from the configured secret."""
    return Encryptor(settings.encryption_key)
