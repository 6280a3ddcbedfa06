"""
File-system blob store for encrypted image payloads.

Blobs are opaque ciphertext; keys are random hex identifiers sharded into
two-character subdirectories.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


class FileBlobStore:
    """Stores opaque blobs under ``root/{key[:2]}/{key}``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or not all(c in "0123456789abcdef" for c in key):
            msg = f"Invalid blob key: {key!r}"
            raise ValueError(msg)
        return self._root / key[:2] / key

    def put(self, data: bytes) -> str:
        """Write ``data`` and return its new key."""
        key = uuid.uuid4().hex
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        logger.debug(f"Stored blob {key[:8]}... ({len(data)} bytes)")
        return key

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).exists()
