"""
Search archive - owner and admin access to stored searches.

The only place where stored artifacts are decrypted. Every read checks that
the requester owns the record or is an admin.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from image_trace.domain.entities import AggregatedResult, RequesterContext, SearchRecord
from image_trace.shared.exceptions import (
    AccessDeniedError,
    EncryptionError,
    EntitlementDenied,
    NotFoundError,
    PersistenceError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from image_trace.application.search.entitlements import EntitlementTable
    from image_trace.infrastructure.crypto import EncryptionService
    from image_trace.infrastructure.storage import FileBlobStore, JsonRecordStore

logger = logging.getLogger(__name__)


class SearchArchive:
    def __init__(
        self,
        records: JsonRecordStore,
        blobs: FileBlobStore,
        encryption: EncryptionService,
        entitlements: EntitlementTable,
    ) -> None:
        self._records = records
        self._blobs = blobs
        self._encryption = encryption
        self._entitlements = entitlements

    async def get_record(self, search_id: str, requester: RequesterContext) -> SearchRecord:
        """Load a record the requester may read."""
        try:
            record = await asyncio.to_thread(self._records.get, search_id)
        except ValueError as e:
            raise NotFoundError("Search", search_id) from e
        if record is None:
            raise NotFoundError("Search", search_id)
        if not requester.owns(record.account_id):
            logger.warning(f"Access to search {search_id} denied for account {requester.account_id}")
            raise AccessDeniedError(f"Search {search_id} belongs to another account")
        return record

    async def export(self, search_id: str, requester: RequesterContext) -> dict[str, Any]:
        """Record summary plus the decrypted, unshaped result set."""
        record = await self.get_record(search_id, requester)
        results: list[AggregatedResult] = []
        if record.encrypted_results:
            raw = self._encryption.decrypt_json(record.encrypted_results)
            results = [AggregatedResult.from_dict(item) for item in raw]
        return {
            **record.summary(),
            "account_id": record.account_id,
            "image_hash": record.image_hash,
            "failure_reason": record.failure_reason,
            "provider_usage": [u.to_dict() for u in record.provider_usage],
            "processing_log": [s.to_dict() for s in record.processing_log],
            "results": [r.to_dict() for r in results],
        }

    async def load_image(self, search_id: str, requester: RequesterContext) -> tuple[SearchRecord, bytes]:
        """Decrypted image bytes of a stored search."""
        record = await self.get_record(search_id, requester)
        if not record.encrypted_image_ref:
            raise NotFoundError("Stored image of search", search_id)
        blob_key = self._encryption.decrypt_text(record.encrypted_image_ref)
        ciphertext = await asyncio.to_thread(self._blobs.get, blob_key)
        if ciphertext is None:
            raise PersistenceError(f"Image blob of search {search_id} is missing", search_id=search_id)
        return record, self._encryption.decrypt_bytes(ciphertext)

    async def history(self, requester: RequesterContext, limit: int = 50) -> list[dict[str, Any]]:
        """Public summaries of the requester's searches, newest first."""
        if requester.account_id is None:
            return []
        records = await asyncio.to_thread(self._records.list_by_account, requester.account_id)
        return [r.summary() for r in records[:limit]]

    async def delete(self, search_ids: Iterable[str], requester: RequesterContext) -> list[str]:
        """
        Remove records and their image blobs.

        Explicit deletion is a premium feature; admins may always delete.
        Every id is resolved and access-checked before anything is removed,
        so a missing or foreign id leaves the whole batch untouched.

        Returns:
            Ids that were deleted
        """
        if not requester.is_admin and not self._entitlements.for_plan(requester.plan).can_delete:
            raise EntitlementDenied("delete", requester.plan.value)

        records = [await self.get_record(search_id, requester) for search_id in dict.fromkeys(search_ids)]
        deleted = []
        for record in records:
            await self.remove(record)
            deleted.append(record.search_id)
        logger.info(f"Deleted {len(deleted)} searches for account {requester.account_id}")
        return deleted

    async def remove(self, record: SearchRecord) -> None:
        """
        Delete a record and its blob without access checks (retention, admin).

        An image reference that no longer decrypts (rotated key, corruption)
        leaves its blob behind; the record itself is still removed.
        """
        if record.encrypted_image_ref:
            try:
                blob_key = self._encryption.decrypt_text(record.encrypted_image_ref)
                await asyncio.to_thread(self._blobs.delete, blob_key)
            except (EncryptionError, ValueError) as e:
                logger.warning(f"Search {record.search_id}: unreadable image reference, blob not removed: {e}")
        await asyncio.to_thread(self._records.delete, record.search_id)
