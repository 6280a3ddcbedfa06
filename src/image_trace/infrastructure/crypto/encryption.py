"""
Encryption service for search artifacts.

Fernet (AES-128-CBC + HMAC-SHA256) with a key derived from the server
secret. The key is derived once at construction and never changes for the
lifetime of the service.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from image_trace.shared.exceptions import ConfigurationError, EncryptionError

logger = logging.getLogger(__name__)


def derive_key(secret: str) -> bytes:
    """Derive a stable 32-byte urlsafe Fernet key from an arbitrary secret."""
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class EncryptionService:
    """
    Symmetric encryption for image payloads, blob keys and result sets.

    Args:
        secret: Server secret. A value that already is a valid Fernet key is
                used as-is; anything else is run through :func:`derive_key`.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            msg = "Encryption secret is not configured"
            raise ConfigurationError(msg)
        self._fernet = Fernet(self._get_key(secret))

    @staticmethod
    def _get_key(secret: str) -> bytes:
        try:
            Fernet(secret.encode("utf-8"))
        except ValueError:
            return derive_key(secret)
        return secret.encode("utf-8")

    # ── bytes ────────────────────────────────────────────────────────────

    def encrypt_bytes(self, data: bytes) -> bytes:
        return self._fernet.encrypt(data)

    def decrypt_bytes(self, token: bytes) -> bytes:
        try:
            return self._fernet.decrypt(token)
        except InvalidToken as e:
            raise EncryptionError("Ciphertext is invalid or was encrypted with another key") from e

    # ── text ─────────────────────────────────────────────────────────────

    def encrypt_text(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt_text(self, token: str) -> str:
        return self.decrypt_bytes(token.encode("ascii")).decode("utf-8")

    # ── JSON ─────────────────────────────────────────────────────────────

    def encrypt_json(self, value: Any) -> str:
        return self.encrypt_text(json.dumps(value, ensure_ascii=False, separators=(",", ":")))

    def decrypt_json(self, token: str) -> Any:
        return json.loads(self.decrypt_text(token))
