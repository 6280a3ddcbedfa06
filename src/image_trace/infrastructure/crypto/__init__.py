"""Encryption of stored search artifacts."""

from .encryption import EncryptionService, derive_key

__all__ = ["EncryptionService", "derive_key"]
