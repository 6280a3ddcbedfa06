"""
JSON-file record store for SearchRecords.

Storage model:
- One file per record: {data_dir}/records/{search_id}.json
- Writes go to a temp file first and are moved into place atomically
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from pathlib import Path

from image_trace.domain.entities import SearchRecord

logger = logging.getLogger(__name__)


class JsonRecordStore:
    """CRUD for search records stored as JSON documents.

    Args:
        data_dir: Root data directory (records live in ``data_dir/records``)
    """

    def __init__(self, data_dir: str | Path) -> None:
        self._dir = Path(data_dir).expanduser() / "records"
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, search_id: str) -> Path:
        if not search_id or not search_id.isalnum():
            msg = f"Invalid search id: {search_id!r}"
            raise ValueError(msg)
        return self._dir / f"{search_id}.json"

    def save(self, record: SearchRecord) -> None:
        path = self._path(record.search_id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(record.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)

    def get(self, search_id: str) -> SearchRecord | None:
        path = self._path(search_id)
        if not path.exists():
            return None
        return SearchRecord.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def delete(self, search_id: str) -> bool:
        path = self._path(search_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def iter_records(self) -> Iterator[SearchRecord]:
        for path in sorted(self._dir.glob("*.json")):
            try:
                yield SearchRecord.from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable record {path.name}: {e}")

    def list_by_account(self, account_id: str) -> list[SearchRecord]:
        """Records of one account, newest first."""
        records = [r for r in self.iter_records() if r.account_id == account_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records
