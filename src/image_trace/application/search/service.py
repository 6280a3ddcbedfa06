"""
Application Service: Reverse Image Search

Coordinates one search end to end:

    allowance -> search config -> provider selection -> orchestration
    -> aggregation -> shaping -> persistence

and exposes the record operations the surrounding application needs
(retry, export, delete, history, retention purge).

Architecture:
    Presentation (api.server) -> Application (here) -> Infrastructure
    (providers, storage, crypto). Domain entities flow upward.

Error policy:
    Provider failures never escape; a degraded search is a plain success
    with ``providers_failed`` populated. Only a search with no successful
    provider (SearchFailedError / OrchestrationTimeout) or a failed
    persistence (PersistenceError, carrying the shaped response) reaches
    the caller.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any

from image_trace.domain.entities import (
    PlanTier,
    ProcessingLog,
    RequesterContext,
    SearchOptions,
    SearchQuery,
    SearchRequest,
    SearchResponse,
    SearchStatus,
    SearchSummary,
    UsageReport,
)
from image_trace.shared.exceptions import (
    InvalidParameterError,
    OrchestrationTimeout,
    PersistenceError,
    SearchFailedError,
)

from .config import SearchConfig, resolve_search_config

if TYPE_CHECKING:
    from collections.abc import Iterable

    from image_trace.application.persistence import (
        PersistenceWriter,
        PurgeReport,
        RetentionPolicy,
        SearchArchive,
    )
    from image_trace.infrastructure.images import ImageLoader

    from .access_shaper import AccessShaper
    from .allowance import SearchAllowance
    from .entitlements import EntitlementTable
    from .orchestrator import SearchOrchestrator
    from .registry import ProviderRegistry
    from .result_aggregator import ResultAggregator

logger = logging.getLogger(__name__)


class SearchService:
    """
    Reverse image search application service.

    All collaborators are injected (see ``image_trace.container``).
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        orchestrator: SearchOrchestrator,
        aggregator: ResultAggregator,
        shaper: AccessShaper,
        writer: PersistenceWriter,
        archive: SearchArchive,
        retention: RetentionPolicy,
        entitlements: EntitlementTable,
        allowance: SearchAllowance,
        image_loader: ImageLoader,
    ) -> None:
        self._registry = registry
        self._orchestrator = orchestrator
        self._aggregator = aggregator
        self._shaper = shaper
        self._writer = writer
        self._archive = archive
        self._retention = retention
        self._entitlements = entitlements
        self._allowance = allowance
        self._images = image_loader

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, request: SearchRequest) -> SearchResponse:
        """
        Run a search for a raw request.

        Raises:
            ValidationError: bad image payload or options
            SearchLimitExceeded: account has no searches left
            SearchFailedError: no provider succeeded (record still written)
            PersistenceError: storage failed; ``partial_response`` is set
        """
        self._allowance.check(request.requester)
        image_bytes, mime_type = await self._images.load(request.image_bytes, request.image_reference)
        query = SearchQuery.create(
            image_bytes,
            search_type=request.search_type,
            requester=request.requester,
            options=request.options,
            mime_type=mime_type,
        )
        return await self.run_query(query)

    async def run_query(self, query: SearchQuery, *, retried_from: str | None = None) -> SearchResponse:
        """Run the pipeline for an already built query."""
        start = time.monotonic()
        requester = query.requester
        log = ProcessingLog()
        log.append("query_received")

        config = self.resolve_config(requester.plan, query)
        adapters = await self._registry.select_providers(
            requester.plan,
            allowed=config.providers,
            priorities=config.provider_priorities,
        )
        log.append(
            "provider_selection",
            success=bool(adapters),
            warning=None if adapters else "no providers available",
        )
        logger.info(
            f"Search {query!r}: plan={requester.plan.value}, "
            f"providers={[a.provider_id for a in adapters]}, timeout={config.timeout_seconds}s"
        )

        raw, report = await self._orchestrator.execute(
            query,
            adapters,
            config.timeout_seconds,
            config.provider_options(),
            log,
        )

        aggregated, stats = self._aggregator.aggregate(raw, config)
        log.append("aggregation", success=True)
        shaped = self._shaper.shape(aggregated, requester.plan)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        summary = SearchSummary(
            total_results=len(shaped),
            elapsed_ms=elapsed_ms,
            providers_used=report.providers_used,
            providers_failed=report.providers_failed,
            message=_summary_message(report, len(shaped), config, stats.total_input),
        )

        try:
            search_id = await self._writer.persist(query, aggregated, report, log, retried_from=retried_from)
        except PersistenceError as e:
            e.partial_response = SearchResponse(
                search_id=None,
                results=shaped,
                summary=summary,
                retried_from=retried_from,
            )
            raise

        if report.outcome == SearchStatus.FAILED:
            raise _failure_for(report, config, search_id)

        return SearchResponse(search_id=search_id, results=shaped, summary=summary, retried_from=retried_from)

    def resolve_config(self, plan: PlanTier, query: SearchQuery) -> SearchConfig:
        return resolve_search_config(
            self._entitlements.for_plan(plan),
            query.search_type,
            query.options,
            priorities=self._registry.priorities(),
        )

    # ── Record operations ────────────────────────────────────────────────

    async def retry(self, search_id: str, requester: RequesterContext) -> SearchResponse:
        """
        Re-run a failed search from its stored image.

        A new record with ``retried_from`` is written; the original is kept.
        Retries run on the record owner's plan and do not count against the
        search allowance.
        """
        record, image_bytes = await self._archive.load_image(search_id, requester)
        if record.status != SearchStatus.FAILED:
            raise InvalidParameterError("search_id", search_id, "a failed search")

        owner = requester
        if requester.account_id != record.account_id:
            owner = RequesterContext(account_id=record.account_id, plan=PlanTier(record.owner_plan))

        query = SearchQuery.create(
            image_bytes,
            search_type=record.search_type,
            requester=owner,
            options=SearchOptions(),
        )
        logger.info(f"Retrying search {search_id}")
        return await self.run_query(query, retried_from=search_id)

    async def export(self, search_id: str, requester: RequesterContext) -> dict[str, Any]:
        return await self._archive.export(search_id, requester)

    async def delete(self, search_ids: Iterable[str], requester: RequesterContext) -> list[str]:
        return await self._archive.delete(search_ids, requester)

    async def history(self, requester: RequesterContext, limit: int = 50) -> list[dict[str, Any]]:
        return await self._archive.history(requester, limit=limit)

    async def purge_expired(self, now: datetime | None = None) -> PurgeReport:
        return await self._retention.purge(now)

    # ── Introspection ────────────────────────────────────────────────────

    async def provider_stats(self) -> dict[str, dict[str, Any]]:
        return await self._registry.provider_stats()

    def validate(self) -> dict[str, Any]:
        return self._registry.validate()


def _summary_message(report: UsageReport, count: int, config: SearchConfig, raw_count: int) -> str | None:
    if report.outcome == SearchStatus.FAILED:
        return report.reason
    if count == 0:
        if raw_count:
            return f"No matches at or above {config.minimum_similarity:.0f}% similarity"
        return "No matches found"
    if report.providers_failed:
        return f"{len(report.providers_failed)} provider(s) unavailable, results may be incomplete"
    return None


def _failure_for(report: UsageReport, config: SearchConfig, search_id: str) -> SearchFailedError:
    details = {"reason": report.reason, "providers_failed": report.providers_failed}
    if report.deadline_exceeded:
        return OrchestrationTimeout(config.timeout_seconds, search_id=search_id, details=details)
    if not report.usage:
        return SearchFailedError(
            "No search providers are available",
            kind="no_providers_available",
            search_id=search_id,
            details=details,
        )
    return SearchFailedError(
        "All search providers failed",
        kind="all_providers_failed",
        search_id=search_id,
        details=details,
    )
