"""Durable storage: encrypted blobs and search records."""

from .blob_store import FileBlobStore
from .record_store import JsonRecordStore

__all__ = ["FileBlobStore", "JsonRecordStore"]
