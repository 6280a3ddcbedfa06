"""
Search Orchestrator - concurrent fan-out under one shared deadline.

One asyncio task per selected adapter. All tasks share a single wall-clock
budget: when it expires, tasks still in flight are cancelled and recorded
as ``timeout`` failures for their provider, while results of tasks that
already finished are kept.

Outcome:
- ``completed`` when at least one provider succeeded
- ``failed`` when every provider failed, or no provider was selected
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from image_trace.domain.entities import (
    ProcessingLog,
    ProviderResult,
    ProviderUsage,
    SearchQuery,
    SearchStatus,
    UsageReport,
)
from image_trace.infrastructure.providers import (
    ProviderFailure,
    ProviderOutcome,
    ProviderSearchOptions,
    SearchProvider,
)
from image_trace.shared.exceptions import ProviderTimeoutError

logger = logging.getLogger(__name__)

NO_PROVIDERS_REASON = "no providers available"


class SearchOrchestrator:
    """Fans one query out to a set of adapters and accounts for each call."""

    async def execute(
        self,
        query: SearchQuery,
        adapters: Sequence[SearchProvider],
        global_timeout: float,
        options: ProviderSearchOptions | None = None,
        log: ProcessingLog | None = None,
    ) -> tuple[list[ProviderResult], UsageReport]:
        """
        Run every adapter concurrently under ``global_timeout`` seconds.

        Returns:
            (all provider results in adapter order, usage report)
        """
        options = options or ProviderSearchOptions()
        log = log if log is not None else ProcessingLog()
        start = time.monotonic()

        if not adapters:
            logger.warning(f"No providers selected for {query!r}")
            log.append("orchestration", success=False, warning=NO_PROVIDERS_REASON)
            report = UsageReport(usage=(), outcome=SearchStatus.FAILED, reason=NO_PROVIDERS_REASON)
            return [], report

        log.append("orchestration_started")
        tasks = {
            adapter.provider_id: asyncio.create_task(
                adapter.execute(query, options),
                name=f"provider:{adapter.provider_id}",
            )
            for adapter in adapters
        }

        _done, pending = await asyncio.wait(tasks.values(), timeout=global_timeout)

        for task in pending:
            task.cancel()
        if pending:
            # Let cancellations settle before reporting
            await asyncio.gather(*pending, return_exceptions=True)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        results: list[ProviderResult] = []
        usage: list[ProviderUsage] = []

        for provider_id, task in tasks.items():
            if task in pending:
                outcome: ProviderOutcome = ProviderFailure(
                    provider=provider_id,
                    error=ProviderTimeoutError(
                        f"Cancelled at search deadline ({global_timeout:.1f}s)",
                        provider=provider_id,
                    ),
                    duration_ms=elapsed_ms,
                )
            else:
                outcome = task.result()

            if outcome.ok:
                results.extend(outcome.results)
                usage.append(
                    ProviderUsage(
                        provider=provider_id,
                        succeeded=True,
                        result_count=len(outcome.results),
                        duration_ms=outcome.duration_ms,
                    )
                )
                log.append(
                    "provider_search",
                    provider=provider_id,
                    duration_ms=outcome.duration_ms,
                    success=True,
                )
            else:
                usage.append(
                    ProviderUsage(
                        provider=provider_id,
                        succeeded=False,
                        error=f"{outcome.kind}: {outcome.error}",
                        duration_ms=outcome.duration_ms,
                    )
                )
                log.append(
                    "provider_search",
                    provider=provider_id,
                    duration_ms=outcome.duration_ms,
                    success=False,
                    error=f"{outcome.kind}: {outcome.error}",
                )

        succeeded = any(u.succeeded for u in usage)
        report = UsageReport(
            usage=tuple(usage),
            outcome=SearchStatus.COMPLETED if succeeded else SearchStatus.FAILED,
            deadline_exceeded=bool(pending),
            reason=None if succeeded else "all providers failed",
            elapsed_ms=elapsed_ms,
        )
        log.append(
            "orchestration",
            duration_ms=elapsed_ms,
            success=succeeded,
            warning=f"{len(pending)} provider(s) cancelled at deadline" if pending else None,
        )
        logger.info(
            f"Orchestration {report.outcome.value}: {len(results)} results, "
            f"used={report.providers_used}, failed={[f['provider'] for f in report.providers_failed]}, "
            f"{elapsed_ms}ms"
        )
        return results, report
