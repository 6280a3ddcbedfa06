"""
Tests for the blob store and the JSON record store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from image_trace.domain.entities import SearchRecord, SearchStatus


class TestFileBlobStore:
    def test_put_get_delete(self, blob_store):
        key = blob_store.put(b"ciphertext")
        assert len(key) == 32
        assert blob_store.exists(key)
        assert blob_store.get(key) == b"ciphertext"
        assert blob_store.delete(key)
        assert blob_store.get(key) is None
        assert not blob_store.delete(key)

    def test_keys_are_unique(self, blob_store):
        assert blob_store.put(b"a") != blob_store.put(b"a")

    @pytest.mark.parametrize("key", ["", "../etc/passwd", "ABC", "zz"])
    def test_invalid_keys(self, blob_store, key):
        with pytest.raises(ValueError):
            blob_store.get(key)


class TestJsonRecordStore:
    def test_save_and_get(self, record_store):
        record = SearchRecord(search_id="abc123", search_type="general_search", account_id="a1")
        record_store.save(record)
        loaded = record_store.get("abc123")
        assert loaded == record

    def test_overwrite(self, record_store):
        record = SearchRecord(search_id="abc123", search_type="general_search")
        record_store.save(record)
        record.transition(SearchStatus.COMPLETED)
        record_store.save(record)
        assert record_store.get("abc123").status == SearchStatus.COMPLETED

    def test_missing(self, record_store):
        assert record_store.get("nothere") is None
        assert not record_store.delete("nothere")

    def test_invalid_id(self, record_store):
        with pytest.raises(ValueError):
            record_store.get("../escape")

    def test_list_by_account_newest_first(self, record_store):
        now = datetime.now(timezone.utc)
        for i in range(3):
            record_store.save(
                SearchRecord(
                    search_id=f"s{i}",
                    search_type="general_search",
                    account_id="a1",
                    created_at=now - timedelta(days=i),
                )
            )
        record_store.save(SearchRecord(search_id="other", search_type="general_search", account_id="a2"))
        assert [r.search_id for r in record_store.list_by_account("a1")] == ["s0", "s1", "s2"]

    def test_unreadable_records_skipped(self, record_store, temp_dir):
        record_store.save(SearchRecord(search_id="good", search_type="general_search"))
        (temp_dir / "records" / "broken.json").write_text("{not json", encoding="utf-8")
        assert [r.search_id for r in record_store.iter_records()] == ["good"]
