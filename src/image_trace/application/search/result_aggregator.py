"""
ResultAggregator - Multi-Provider Match Merging and Ranking

Turns the flat list of ProviderResults of one search into URL-unique,
ranked AggregatedResults:

1. Drop matches below ``minimum_similarity``
2. Per provider, keep only the ``max_results_per_provider`` best matches
   (one noisy provider cannot dominate the merged list)
3. Merge by exact, case-sensitive URL: highest similarity wins, every
   contributing provider is recorded, missing fields are filled from the
   other contributors, the most severe status is kept
4. Rank by similarity desc, then provider priority desc, then first-seen order
5. Apply the global ``max_results`` cap

Architecture Decision:
    ResultAggregator is pure: it makes no calls and keeps no state, so the
    same input always yields the same output. Dedup is URL-exact only; two
    copies of an image hosted at different URLs stay separate results.

Example:
    >>> aggregator = ResultAggregator()
    >>> results, stats = aggregator.aggregate(provider_results, search_config)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from image_trace.domain.entities import AggregatedResult, ProviderResult, ResultStatus, result_id_for

if TYPE_CHECKING:
    from .config import SearchConfig

logger = logging.getLogger(__name__)


@dataclass
class AggregationStats:
    """Statistics from aggregation process."""

    total_input: int = 0
    below_threshold: int = 0
    capped_per_provider: int = 0
    duplicates_merged: int = 0
    capped_global: int = 0
    unique_results: int = 0
    by_provider: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_input": self.total_input,
            "below_threshold": self.below_threshold,
            "capped_per_provider": self.capped_per_provider,
            "duplicates_merged": self.duplicates_merged,
            "capped_global": self.capped_global,
            "unique_results": self.unique_results,
            "by_provider": self.by_provider,
        }


@dataclass
class _MergeGroup:
    """All matches sharing one URL, in first-seen order."""

    url: str
    first_seen: int
    members: list[ProviderResult] = field(default_factory=list)


class ResultAggregator:
    """
    Aggregates and ranks provider matches.

    Usage:
        aggregator = ResultAggregator()
        merged, stats = aggregator.aggregate(results, config)
    """

    def aggregate(
        self,
        results: list[ProviderResult],
        config: SearchConfig,
    ) -> tuple[list[AggregatedResult], AggregationStats]:
        """
        Filter, cap, merge, rank and truncate.

        Args:
            results: Matches from all providers, in orchestration order
            config: Effective search configuration (thresholds, caps, priorities)

        Returns:
            Tuple of (ranked URL-unique results, aggregation statistics)
        """
        stats = AggregationStats(total_input=len(results))
        if not results:
            return [], stats

        # 1. Threshold
        kept = [(i, r) for i, r in enumerate(results) if r.similarity >= config.minimum_similarity]
        stats.below_threshold = len(results) - len(kept)

        # 2. Per-provider cap, best matches first (stable on ties)
        by_provider: dict[str, list[tuple[int, ProviderResult]]] = {}
        for item in kept:
            by_provider.setdefault(item[1].provider, []).append(item)
        capped: list[tuple[int, ProviderResult]] = []
        for provider, items in by_provider.items():
            items.sort(key=lambda item: (-item[1].similarity, item[0]))
            top = items[: config.max_results_per_provider]
            stats.capped_per_provider += len(items) - len(top)
            stats.by_provider[provider] = len(top)
            capped.extend(top)
        capped.sort(key=lambda item: item[0])

        # 3. Merge by exact URL
        groups: dict[str, _MergeGroup] = {}
        for index, result in capped:
            group = groups.get(result.url)
            if group is None:
                group = groups[result.url] = _MergeGroup(url=result.url, first_seen=index)
            group.members.append(result)
        stats.duplicates_merged = len(capped) - len(groups)

        merged = [(group.first_seen, self._merge(group, config)) for group in groups.values()]

        # 4. Rank
        merged.sort(
            key=lambda item: (
                -item[1].similarity,
                -config.priority_of(item[1].provider),
                item[0],
            )
        )
        ranked = [result for _, result in merged]

        # 5. Global cap
        stats.capped_global = max(0, len(ranked) - config.max_results)
        ranked = ranked[: config.max_results]
        stats.unique_results = len(ranked)

        logger.debug(f"Aggregation: {stats.to_dict()}")
        return ranked, stats

    @staticmethod
    def _merge(group: _MergeGroup, config: SearchConfig) -> AggregatedResult:
        """Collapse matches of one URL into a single AggregatedResult."""
        members = group.members
        # Highest similarity wins; ties go to the higher-priority provider, then first seen
        ordered = sorted(
            enumerate(members),
            key=lambda item: (-item[1].similarity, -config.priority_of(item[1].provider), item[0]),
        )
        ranked_members = [m for _, m in ordered]
        best = ranked_members[0]

        first_index: dict[str, int] = {}
        for i, member in enumerate(members):
            first_index.setdefault(member.provider, i)
        providers = sorted(first_index, key=lambda p: (-config.priority_of(p), first_index[p]))

        metadata: dict[str, Any] = {}
        for member in reversed(ranked_members):
            metadata.update(member.metadata)

        return AggregatedResult(
            result_id=result_id_for(group.url),
            url=group.url,
            site_name=best.site_name or _first(m.site_name for m in ranked_members) or "",
            similarity=best.similarity,
            providers=tuple(providers),
            title=best.title or _first(m.title for m in ranked_members) or "",
            status=ResultStatus.most_severe(*(m.status for m in members)),
            thumbnail=best.thumbnail or _first(m.thumbnail for m in ranked_members),
            page_url=best.page_url or _first(m.page_url for m in ranked_members),
            metadata=metadata,
            detected_at=min(m.detected_at for m in members),
        )


def _first(values: Any) -> Any:
    for value in values:
        if value:
            return value
    return None
