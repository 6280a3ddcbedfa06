"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

import asyncio
import io
import tempfile
from pathlib import Path

import pytest
from PIL import Image

from image_trace.application.persistence import PersistenceWriter, RetentionPolicy, SearchArchive
from image_trace.application.search import (
    AccessShaper,
    EntitlementTable,
    ProviderRegistry,
    ResultAggregator,
    SearchAllowance,
    SearchConfig,
    SearchOrchestrator,
    SearchService,
)
from image_trace.domain.entities import (
    PlanTier,
    ProviderResult,
    RequesterContext,
    ResultStatus,
    SearchQuery,
    SearchType,
)
from image_trace.infrastructure.crypto import EncryptionService
from image_trace.infrastructure.images import ImageLoader
from image_trace.infrastructure.providers import SearchProvider
from image_trace.infrastructure.storage import FileBlobStore, JsonRecordStore

TEST_SECRET = "test-secret-do-not-use-in-production"


# ============================================================
# Environment Fixtures
# ============================================================


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def png_bytes() -> bytes:
    """A small, valid PNG image."""
    img = Image.new("RGB", (32, 32), color=(200, 30, 30))
    for x in range(16):
        img.putpixel((x, x), (10, 10, 240))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


# ============================================================
# Provider doubles
# ============================================================


class FakeProvider(SearchProvider):
    """Scripted adapter: returns fixed results, raises, or sleeps."""

    requires_api_key = False

    def __init__(
        self,
        provider_id: str,
        priority: int = 5,
        results: list[ProviderResult] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        available: bool = True,
    ) -> None:
        self.provider_id = provider_id
        self.display_name = provider_id.title()
        super().__init__(base_url="http://fake.invalid", priority=priority)
        self.results = results or []
        self.error = error
        self.delay = delay
        self.available = available
        self.calls = 0

    async def _probe(self) -> bool:
        return self.available

    async def _search(self, query, options):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.results)


@pytest.fixture
def make_result():
    """Factory for ProviderResult."""

    def _make(
        url: str,
        similarity: float,
        provider: str = "proprietary",
        **kwargs,
    ) -> ProviderResult:
        kwargs.setdefault("site_name", url.split("/")[2] if "://" in url else "example.com")
        kwargs.setdefault("title", f"Match at {url}")
        kwargs.setdefault("status", ResultStatus.FOUND)
        return ProviderResult(url=url, similarity=similarity, provider=provider, **kwargs)

    return _make


@pytest.fixture
def fake_provider():
    """Factory for FakeProvider."""
    return FakeProvider


@pytest.fixture
def search_config():
    """Factory for SearchConfig with permissive defaults."""

    def _make(**overrides) -> SearchConfig:
        values = {
            "providers": ("proprietary", "tineye", "google_vision"),
            "max_results": 50,
            "max_results_per_provider": 25,
            "minimum_similarity": 0.0,
            "timeout_seconds": 5.0,
            "search_type": SearchType.GENERAL,
            "provider_priorities": {"proprietary": 10, "tineye": 9, "google_vision": 8},
        }
        values.update(overrides)
        return SearchConfig(**values)

    return _make


@pytest.fixture
def make_query(png_bytes):
    def _make(plan: PlanTier = PlanTier.PRO, account_id: str | None = "acct-1", **kwargs) -> SearchQuery:
        requester = RequesterContext(account_id=account_id, plan=plan)
        return SearchQuery.create(png_bytes, requester=requester, mime_type="image/png", **kwargs)

    return _make


# ============================================================
# Storage / service fixtures
# ============================================================


@pytest.fixture
def encryption() -> EncryptionService:
    return EncryptionService(TEST_SECRET)


@pytest.fixture
def record_store(temp_dir) -> JsonRecordStore:
    return JsonRecordStore(temp_dir)


@pytest.fixture
def blob_store(temp_dir) -> FileBlobStore:
    return FileBlobStore(temp_dir / "blobs")


@pytest.fixture
def entitlements() -> EntitlementTable:
    return EntitlementTable()


@pytest.fixture
def writer(record_store, blob_store, encryption) -> PersistenceWriter:
    return PersistenceWriter(record_store, blob_store, encryption)


@pytest.fixture
def archive(record_store, blob_store, encryption, entitlements) -> SearchArchive:
    return SearchArchive(record_store, blob_store, encryption, entitlements)


@pytest.fixture
def build_service(record_store, writer, archive, entitlements):
    """Factory: SearchService over real components and the given adapters."""

    def _build(providers: list[SearchProvider], table: EntitlementTable | None = None) -> SearchService:
        table = table or entitlements
        return SearchService(
            registry=ProviderRegistry(providers, table, availability_ttl=60),
            orchestrator=SearchOrchestrator(),
            aggregator=ResultAggregator(),
            shaper=AccessShaper(id_key=TEST_SECRET),
            writer=writer,
            archive=archive,
            retention=RetentionPolicy(record_store, archive),
            entitlements=table,
            allowance=SearchAllowance(table),
            image_loader=ImageLoader(),
        )

    return _build
