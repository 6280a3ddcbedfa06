"""
Tests for ResultAggregator - Multi-Provider Match Merging and Ranking

Covers:
1. Similarity threshold filtering
2. Per-provider and global caps
3. URL-exact deduplication and field merging
4. Ranking (similarity, provider priority, first-seen order)
5. AggregationStats tracking
"""

from datetime import datetime, timedelta, timezone

import pytest

from image_trace.application.search import ResultAggregator
from image_trace.domain.entities import ResultStatus, result_id_for


@pytest.fixture
def aggregator():
    return ResultAggregator()


# =============================================================================
# Filtering and caps
# =============================================================================


class TestFiltering:
    def test_empty_input(self, aggregator, search_config):
        results, stats = aggregator.aggregate([], search_config())
        assert results == []
        assert stats.total_input == 0

    def test_threshold(self, aggregator, make_result, search_config):
        raw = [make_result("https://a.com/1", 80), make_result("https://a.com/2", 69.9), make_result("https://a.com/3", 70)]
        results, stats = aggregator.aggregate(raw, search_config(minimum_similarity=70))
        assert [r.url for r in results] == ["https://a.com/1", "https://a.com/3"]
        assert stats.below_threshold == 1

    def test_per_provider_cap_keeps_best(self, aggregator, make_result, search_config):
        raw = [make_result(f"https://a.com/{i}", 60 + i) for i in range(5)]
        raw.append(make_result("https://b.com/1", 50, provider="tineye"))
        results, stats = aggregator.aggregate(raw, search_config(max_results_per_provider=2))
        assert [r.url for r in results] == ["https://a.com/4", "https://a.com/3", "https://b.com/1"]
        assert stats.capped_per_provider == 3
        assert stats.by_provider == {"proprietary": 2, "tineye": 1}

    def test_global_cap(self, aggregator, make_result, search_config):
        raw = [make_result(f"https://a.com/{i}", 90 - i) for i in range(10)]
        results, stats = aggregator.aggregate(raw, search_config(max_results=3))
        assert len(results) == 3
        assert stats.capped_global == 7
        assert stats.unique_results == 3


# =============================================================================
# Deduplication
# =============================================================================


class TestDeduplication:
    def test_same_url_merged(self, aggregator, make_result, search_config):
        raw = [
            make_result("https://x.com/img.jpg", 88, provider="google_vision", title="", thumbnail="https://t/1"),
            make_result("https://x.com/img.jpg", 93, provider="tineye", title="From TinEye"),
        ]
        results, stats = aggregator.aggregate(raw, search_config())
        assert len(results) == 1
        merged = results[0]
        assert merged.similarity == 93
        assert merged.title == "From TinEye"
        assert merged.thumbnail == "https://t/1"
        assert merged.providers == ("tineye", "google_vision")
        assert merged.result_id == result_id_for("https://x.com/img.jpg")
        assert stats.duplicates_merged == 1

    def test_url_match_is_case_sensitive(self, aggregator, make_result, search_config):
        raw = [make_result("https://x.com/IMG.jpg", 90), make_result("https://x.com/img.jpg", 90, provider="tineye")]
        results, _ = aggregator.aggregate(raw, search_config())
        assert len(results) == 2

    def test_most_severe_status_kept(self, aggregator, make_result, search_config):
        raw = [
            make_result("https://x.com/a.jpg", 95, status=ResultStatus.FOUND),
            make_result("https://x.com/a.jpg", 80, provider="tineye", status=ResultStatus.VIOLATION),
        ]
        results, _ = aggregator.aggregate(raw, search_config())
        assert results[0].status == ResultStatus.VIOLATION
        assert results[0].similarity == 95

    def test_metadata_merged_best_wins(self, aggregator, make_result, search_config):
        raw = [
            make_result("https://x.com/a.jpg", 80, provider="tineye", metadata={"domain": "x.com", "backlink_count": 2}),
            make_result("https://x.com/a.jpg", 95, metadata={"domain": "x-best.com"}),
        ]
        results, _ = aggregator.aggregate(raw, search_config())
        assert results[0].metadata == {"domain": "x-best.com", "backlink_count": 2}

    def test_earliest_detection_kept(self, aggregator, make_result, search_config):
        earlier = datetime.now(timezone.utc) - timedelta(hours=1)
        raw = [
            make_result("https://x.com/a.jpg", 95),
            make_result("https://x.com/a.jpg", 80, provider="tineye", detected_at=earlier),
        ]
        results, _ = aggregator.aggregate(raw, search_config())
        assert results[0].detected_at == earlier

    def test_tie_goes_to_higher_priority(self, aggregator, make_result, search_config):
        raw = [
            make_result("https://x.com/a.jpg", 90, provider="google_vision", title="GV"),
            make_result("https://x.com/a.jpg", 90, provider="proprietary", title="Scanner"),
        ]
        results, _ = aggregator.aggregate(raw, search_config())
        assert results[0].title == "Scanner"
        assert results[0].provider == "proprietary"


# =============================================================================
# Ranking
# =============================================================================


class TestRanking:
    def test_sorted_by_similarity(self, aggregator, make_result, search_config):
        raw = [make_result("https://a.com/1", 70), make_result("https://a.com/2", 99), make_result("https://a.com/3", 85)]
        results, _ = aggregator.aggregate(raw, search_config())
        assert [r.similarity for r in results] == [99, 85, 70]

    def test_priority_breaks_ties(self, aggregator, make_result, search_config):
        raw = [
            make_result("https://g.com/1", 90, provider="google_vision"),
            make_result("https://t.com/1", 90, provider="tineye"),
            make_result("https://p.com/1", 90, provider="proprietary"),
        ]
        results, _ = aggregator.aggregate(raw, search_config())
        assert [r.provider for r in results] == ["proprietary", "tineye", "google_vision"]

    def test_first_seen_breaks_remaining_ties(self, aggregator, make_result, search_config):
        raw = [make_result("https://a.com/b", 80), make_result("https://a.com/a", 80)]
        results, _ = aggregator.aggregate(raw, search_config())
        assert [r.url for r in results] == ["https://a.com/b", "https://a.com/a"]

    def test_deterministic(self, aggregator, make_result, search_config):
        raw = [make_result(f"https://a.com/{i % 4}", 50 + (i * 7) % 40, provider=p) for i, p in
               enumerate(["proprietary", "tineye", "google_vision"] * 4)]
        first, _ = aggregator.aggregate(raw, search_config())
        second, _ = aggregator.aggregate(list(raw), search_config())
        assert first == second


class TestThreeProviderScenario:
    """A returns five matches, B overlaps A's top URL and adds one, C returned nothing."""

    def test_merged_ordering(self, aggregator, make_result, search_config):
        a = [
            make_result("https://site.com/1.jpg", 90),
            make_result("https://site.com/2.jpg", 80),
            make_result("https://site.com/3.jpg", 80),
            make_result("https://site.com/4.jpg", 70),
            make_result("https://site.com/5.jpg", 60),
        ]
        b = [
            make_result("https://site.com/1.jpg", 95, provider="tineye"),
            make_result("https://other.net/6.jpg", 55, provider="tineye"),
        ]
        results, stats = aggregator.aggregate(a + b, search_config(minimum_similarity=50, max_results=10))

        assert [r.similarity for r in results] == [95, 80, 80, 70, 60, 55]
        assert results[0].url == "https://site.com/1.jpg"
        assert results[0].providers == ("proprietary", "tineye")
        assert [r.url for r in results[1:3]] == ["https://site.com/2.jpg", "https://site.com/3.jpg"]
        assert stats.duplicates_merged == 1

    def test_truncated_to_max_results(self, aggregator, make_result, search_config):
        a = [make_result(f"https://site.com/{i}.jpg", s) for i, s in enumerate([90, 80, 80, 70, 60])]
        b = [make_result("https://site.com/0.jpg", 95, provider="tineye"), make_result("https://o.net/6.jpg", 55, provider="tineye")]
        results, _ = aggregator.aggregate(a + b, search_config(minimum_similarity=50, max_results=4))
        assert [r.similarity for r in results] == [95, 80, 80, 70]
