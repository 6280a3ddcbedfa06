"""
Persistence & Audit Writer.

Writes one SearchRecord per search:

    processing  ->  completed | failed

Image bytes and the full (unshaped) result set are encrypted before they
touch storage. The encrypted image goes to the blob store; the blob key is
itself encrypted into the record together with the result ciphertext and
the image content hash. No plaintext payload is ever written.

When the full write fails a minimal fallback record (ids, counts, provider
usage, ``failed`` status, failure reason) is attempted. Only if that fails
too does PersistenceError reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from image_trace.domain.entities import (
    AggregatedResult,
    ProcessingLog,
    SearchQuery,
    SearchRecord,
    SearchStatus,
    UsageReport,
)
from image_trace.shared.exceptions import ErrorContext, PersistenceError, is_retryable_error

if TYPE_CHECKING:
    from image_trace.infrastructure.crypto import EncryptionService
    from image_trace.infrastructure.storage import FileBlobStore, JsonRecordStore

logger = logging.getLogger(__name__)

# Retry settings for transient storage errors
MAX_RETRIES = 3
RETRY_DELAY = 0.1  # seconds


class PersistenceWriter:
    """
    Stores encrypted search artifacts and the audit record.

    Args:
        records: Record store
        blobs: Blob store for encrypted images
        encryption: Encryption service (key loaded once at startup)
    """

    def __init__(
        self,
        records: JsonRecordStore,
        blobs: FileBlobStore,
        encryption: EncryptionService,
    ) -> None:
        self._records = records
        self._blobs = blobs
        self._encryption = encryption

    @retry(
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=RETRY_DELAY, min=RETRY_DELAY, max=RETRY_DELAY * 4),
        retry=retry_if_exception(is_retryable_error),
        reraise=True,
    )
    async def _save_record(self, record: SearchRecord) -> None:
        await asyncio.to_thread(self._records.save, record)

    @retry(
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=RETRY_DELAY, min=RETRY_DELAY, max=RETRY_DELAY * 4),
        retry=retry_if_exception(is_retryable_error),
        reraise=True,
    )
    async def _put_blob(self, data: bytes) -> str:
        return await asyncio.to_thread(self._blobs.put, data)

    async def persist(
        self,
        query: SearchQuery,
        results: list[AggregatedResult],
        report: UsageReport,
        log: ProcessingLog,
        *,
        retried_from: str | None = None,
    ) -> str:
        """
        Persist a finished search and return its ``search_id``.

        The processing log is frozen into the record; no step can be
        appended afterwards.

        Raises:
            PersistenceError: neither the full nor the fallback record could be written
        """
        search_id = uuid.uuid4().hex
        final_status = report.outcome
        failure_reason = report.reason if final_status == SearchStatus.FAILED else None

        record = SearchRecord(
            search_id=search_id,
            search_type=query.search_type.value,
            account_id=query.requester.account_id,
            owner_plan=query.requester.plan.value,
            image_hash=query.image_hash,
            provider_usage=list(report.usage),
            providers_used=report.providers_used,
            providers_failed=report.providers_failed,
            elapsed_ms=report.elapsed_ms,
            result_count=len(results),
            retried_from=retried_from,
        )

        blob_key: str | None = None
        try:
            await self._save_record(record)

            ciphertext = await asyncio.to_thread(self._encryption.encrypt_bytes, query.image_bytes)
            blob_key = await self._put_blob(ciphertext)
            record.encrypted_image_ref = self._encryption.encrypt_text(blob_key)
            record.encrypted_results = self._encryption.encrypt_json([r.to_dict() for r in results])

            log.append("persistence", success=True)
            record.processing_log = log.freeze()
            record.failure_reason = failure_reason
            record.transition(final_status)
            await self._save_record(record)
        except Exception as e:
            logger.exception(f"Full write of search {search_id} failed, writing fallback record")
            if blob_key is not None:
                await self._discard_blob(blob_key)
            await self._write_fallback(record, log, e)
            return search_id

        logger.info(f"Persisted search {search_id} ({final_status.value}, {len(results)} results)")
        return search_id

    async def _write_fallback(self, record: SearchRecord, log: ProcessingLog, cause: Exception) -> None:
        reason = f"persistence: {type(cause).__name__}: {cause}"
        if not log.frozen:
            log.append("persistence", success=False, error=reason)
        fallback = SearchRecord(
            search_id=record.search_id,
            search_type=record.search_type,
            account_id=record.account_id,
            owner_plan=record.owner_plan,
            created_at=record.created_at,
            image_hash=record.image_hash,
            provider_usage=record.provider_usage,
            providers_used=record.providers_used,
            providers_failed=record.providers_failed,
            elapsed_ms=record.elapsed_ms,
            result_count=record.result_count,
            processing_log=log.freeze(),
            retried_from=record.retried_from,
            failure_reason=reason,
        )
        fallback.transition(SearchStatus.FAILED)
        try:
            await self._save_record(fallback)
        except Exception as e:
            logger.exception(f"Fallback write of search {record.search_id} failed")
            raise PersistenceError(
                f"Could not persist search: {e}",
                search_id=None,
                context=ErrorContext(operation="persist", metadata={"cause": reason}),
            ) from e
        logger.warning(f"Wrote fallback record for search {record.search_id}")

    async def _discard_blob(self, blob_key: str) -> None:
        try:
            await asyncio.to_thread(self._blobs.delete, blob_key)
        except OSError as e:
            logger.warning(f"Could not remove orphaned blob {blob_key[:8]}...: {e}")
