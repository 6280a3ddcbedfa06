"""
Tests for SearchService - the end-to-end search pipeline.

Providers are scripted FakeProviders; storage, encryption, aggregation and
shaping are the real components writing into a temporary directory.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from image_trace.application.search import EntitlementTable
from image_trace.application.search.access_shaper import PLACEHOLDER_TITLE
from image_trace.domain.entities import (
    PlanTier,
    RequesterContext,
    SearchOptions,
    SearchRequest,
    SearchStatus,
    SearchType,
)
from image_trace.shared.exceptions import (
    InvalidImageError,
    InvalidParameterError,
    OrchestrationTimeout,
    PersistenceError,
    ProviderAuthError,
    ProviderNetworkError,
    SearchFailedError,
    SearchLimitExceeded,
)

PRO = RequesterContext(account_id="acct-1", plan=PlanTier.PRO)


@pytest.fixture
def fast_table():
    """Default entitlements with a short pro deadline."""
    return EntitlementTable.from_dict({"plans": {"pro": {"timeout_seconds": 0.5}}})


class TestThreeProviderScenario:
    """A returns five matches, B overlaps A's top URL, C times out."""

    @pytest.fixture
    def providers(self, fake_provider, make_result):
        a = fake_provider(
            "proprietary",
            priority=10,
            results=[
                make_result("https://site.com/1.jpg", 90),
                make_result("https://site.com/2.jpg", 80),
                make_result("https://site.com/3.jpg", 80),
                make_result("https://site.com/4.jpg", 70),
                make_result("https://site.com/5.jpg", 60),
            ],
        )
        b = fake_provider(
            "tineye",
            priority=9,
            results=[
                make_result("https://site.com/1.jpg", 95, provider="tineye"),
                make_result("https://other.net/6.jpg", 55, provider="tineye"),
            ],
        )
        c = fake_provider("google_vision", priority=8, delay=5.0)
        return [a, b, c]

    async def test_merged_partial_success(self, build_service, providers, fast_table, png_bytes, record_store):
        service = build_service(providers, fast_table)
        request = SearchRequest(
            requester=PRO,
            image_bytes=png_bytes,
            options=SearchOptions(minimum_similarity=50, max_results=10),
        )
        response = await service.search(request)

        assert [r.similarity for r in response.results] == [95, 80, 80, 70, 60, 55]
        top = response.results[0]
        assert top.url == "https://site.com/1.jpg"
        assert top.providers == ("proprietary", "tineye")

        summary = response.summary
        assert summary.total_results == 6
        assert summary.providers_used == ["proprietary", "tineye"]
        assert len(summary.providers_failed) == 1
        assert summary.providers_failed[0]["provider"] == "google_vision"
        assert summary.providers_failed[0]["error"].startswith("timeout:")
        assert summary.message == "1 provider(s) unavailable, results may be incomplete"

        record = record_store.get(response.search_id)
        assert record.status == SearchStatus.COMPLETED
        assert record.result_count == 6

    async def test_truncated_to_max_results(self, build_service, providers, fast_table, png_bytes):
        service = build_service(providers, fast_table)
        request = SearchRequest(
            requester=PRO,
            image_bytes=png_bytes,
            options=SearchOptions(minimum_similarity=50, max_results=3),
        )
        response = await service.search(request)
        assert [r.similarity for r in response.results] == [95, 80, 80]


class TestPlanHandling:
    async def test_anonymous_results_are_redacted(self, build_service, fake_provider, make_result, png_bytes):
        provider = fake_provider(
            "proprietary",
            results=[make_result("https://real-site.com/photo.jpg", 92, title="Real title")],
        )
        service = build_service([provider])
        response = await service.search(SearchRequest(requester=RequesterContext(), image_bytes=png_bytes))

        assert len(response.results) == 1
        data = response.results[0].to_dict()
        assert "url" not in data
        assert data["title"] == PLACEHOLDER_TITLE
        assert data["site_name"] == "real-site.com"

    async def test_free_plan_only_uses_entitled_providers(self, build_service, fake_provider, make_result, png_bytes):
        proprietary = fake_provider("proprietary", results=[make_result("https://a.com/1.jpg", 90)])
        tineye = fake_provider("tineye", priority=9)
        service = build_service([proprietary, tineye])
        requester = RequesterContext(account_id="f1", plan=PlanTier.FREE)

        response = await service.search(SearchRequest(requester=requester, image_bytes=png_bytes))
        assert response.summary.providers_used == ["proprietary"]
        assert tineye.calls == 0

    async def test_search_limit_enforced(self, build_service, fake_provider, png_bytes):
        provider = fake_provider("proprietary")
        service = build_service([provider])
        requester = RequesterContext(
            account_id="f1",
            plan=PlanTier.FREE,
            searches_used=3,
            searches_reset_at=datetime.now(timezone.utc) - timedelta(days=1),
        )
        with pytest.raises(SearchLimitExceeded):
            await service.search(SearchRequest(requester=requester, image_bytes=png_bytes))
        assert provider.calls == 0

    async def test_invalid_image_rejected(self, build_service, fake_provider):
        service = build_service([fake_provider("proprietary")])
        with pytest.raises(InvalidImageError):
            await service.search(SearchRequest(requester=PRO, image_bytes=b"not an image"))

    async def test_revenge_search_type_recorded(self, build_service, fake_provider, png_bytes, record_store):
        service = build_service([fake_provider("proprietary")])
        response = await service.search(
            SearchRequest(requester=PRO, image_bytes=png_bytes, search_type=SearchType.REVENGE),
        )
        assert record_store.get(response.search_id).search_type == "revenge_detection"
        assert response.summary.message == "No matches found"

    async def test_below_threshold_message(self, build_service, fake_provider, make_result, png_bytes):
        provider = fake_provider("proprietary", results=[make_result("https://a.com/1.jpg", 72)])
        service = build_service([provider])
        # Let the adapter pass the match through unfiltered so aggregation drops it
        with patch.object(type(provider), "_cap", staticmethod(lambda results, options: results)):
            response = await service.search(SearchRequest(requester=PRO, image_bytes=png_bytes))
        assert response.results == []
        assert response.summary.message == "No matches at or above 75% similarity"


class TestFailures:
    async def test_all_providers_failed(self, build_service, fake_provider, png_bytes, record_store):
        service = build_service(
            [
                fake_provider("proprietary", error=ProviderNetworkError(provider="proprietary")),
                fake_provider("tineye", error=ProviderAuthError(provider="tineye")),
            ]
        )
        with pytest.raises(SearchFailedError) as exc_info:
            await service.search(SearchRequest(requester=PRO, image_bytes=png_bytes))

        error = exc_info.value
        assert error.kind == "all_providers_failed"
        assert error.search_id is not None
        assert len(error.details["providers_failed"]) == 2

        record = record_store.get(error.search_id)
        assert record.status == SearchStatus.FAILED
        assert record.failure_reason == "all providers failed"
        assert [s.step for s in record.processing_log][0] == "query_received"

    async def test_no_providers_available(self, build_service, fake_provider, png_bytes, record_store):
        service = build_service([fake_provider("proprietary", available=False)])
        with pytest.raises(SearchFailedError) as exc_info:
            await service.search(SearchRequest(requester=PRO, image_bytes=png_bytes))
        assert exc_info.value.kind == "no_providers_available"
        assert record_store.get(exc_info.value.search_id).failure_reason == "no providers available"

    async def test_deadline_without_success(self, build_service, fake_provider, fast_table, png_bytes):
        service = build_service([fake_provider("proprietary", delay=5.0)], fast_table)
        with pytest.raises(OrchestrationTimeout) as exc_info:
            await service.search(SearchRequest(requester=PRO, image_bytes=png_bytes))
        assert exc_info.value.to_dict()["error"] == "orchestration_timeout"
        assert exc_info.value.search_id is not None

    async def test_persistence_failure_carries_partial_response(
        self, build_service, fake_provider, make_result, png_bytes, record_store
    ):
        provider = fake_provider("proprietary", results=[make_result("https://a.com/1.jpg", 90)])
        service = build_service([provider])
        with (
            patch.object(record_store, "save", side_effect=PermissionError("read-only")),
            pytest.raises(PersistenceError) as exc_info,
        ):
            await service.search(SearchRequest(requester=PRO, image_bytes=png_bytes))

        partial = exc_info.value.partial_response
        assert partial is not None
        assert partial.search_id is None
        assert [r.url for r in partial.results] == ["https://a.com/1.jpg"]
        assert partial.summary.providers_used == ["proprietary"]


class TestRetry:
    async def test_retry_failed_search(self, build_service, fake_provider, make_result, png_bytes, record_store):
        provider = fake_provider("proprietary", error=ProviderNetworkError(provider="proprietary"))
        service = build_service([provider])
        with pytest.raises(SearchFailedError) as exc_info:
            await service.search(SearchRequest(requester=PRO, image_bytes=png_bytes))
        failed_id = exc_info.value.search_id

        provider.error = None
        provider.results = [make_result("https://a.com/1.jpg", 90)]
        response = await service.retry(failed_id, PRO)

        assert response.retried_from == failed_id
        assert response.search_id != failed_id
        assert len(response.results) == 1
        assert record_store.get(failed_id).status == SearchStatus.FAILED
        assert record_store.get(response.search_id).retried_from == failed_id

    async def test_retry_completed_search_rejected(self, build_service, fake_provider, png_bytes):
        service = build_service([fake_provider("proprietary")])
        response = await service.search(SearchRequest(requester=PRO, image_bytes=png_bytes))
        with pytest.raises(InvalidParameterError):
            await service.retry(response.search_id, PRO)

    async def test_admin_retry_runs_on_owner_plan(self, build_service, fake_provider, make_result, png_bytes):
        proprietary = fake_provider("proprietary", error=ProviderNetworkError(provider="proprietary"))
        tineye = fake_provider("tineye", priority=9, error=ProviderNetworkError(provider="tineye"))
        service = build_service([proprietary, tineye])
        owner = RequesterContext(account_id="f1", plan=PlanTier.FREE)
        with pytest.raises(SearchFailedError) as exc_info:
            await service.search(SearchRequest(requester=owner, image_bytes=png_bytes))

        proprietary.error = None
        tineye.error = None
        admin = RequesterContext(account_id="admin", plan=PlanTier.PRO, is_admin=True)
        response = await service.retry(exc_info.value.search_id, admin)
        assert response.summary.providers_used == ["proprietary"]
        assert tineye.calls == 0


class TestRecordOperations:
    async def test_history_export_delete(self, build_service, fake_provider, make_result, png_bytes):
        provider = fake_provider("proprietary", results=[make_result("https://a.com/1.jpg", 90)])
        service = build_service([provider])
        response = await service.search(SearchRequest(requester=PRO, image_bytes=png_bytes))

        history = await service.history(PRO)
        assert [h["search_id"] for h in history] == [response.search_id]

        export = await service.export(response.search_id, PRO)
        assert export["results"][0]["url"] == "https://a.com/1.jpg"

        assert await service.delete([response.search_id], PRO) == [response.search_id]
        assert await service.history(PRO) == []

    async def test_purge_expired(self, build_service, fake_provider):
        report = await build_service([fake_provider("proprietary")]).purge_expired()
        assert report.examined == 0

    async def test_introspection(self, build_service, fake_provider):
        service = build_service([fake_provider("proprietary")])
        stats = await service.provider_stats()
        assert stats["proprietary"]["available"] is True
        assert service.validate()["valid"]
