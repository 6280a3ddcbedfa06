"""
Provider Registry & Selector.

Holds the configured adapters and picks, per search, the ones the plan is
entitled to that are currently available, ordered by priority weight
(highest first). Selection never fails: an empty list is a valid answer.

Availability probes are cached for ``availability_ttl`` seconds so
concurrent searches do not hammer provider status endpoints.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from cachetools import TTLCache

from image_trace.domain.entities import PlanTier
from image_trace.infrastructure.providers import SearchProvider

from .entitlements import EntitlementTable

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Explicitly constructed set of adapters (no global state).

    Args:
        providers: Configured adapters
        entitlements: Plan entitlement table
        availability_ttl: Seconds a probe result is reused
    """

    def __init__(
        self,
        providers: Iterable[SearchProvider],
        entitlements: EntitlementTable | None = None,
        availability_ttl: float = 60.0,
    ) -> None:
        self._providers: dict[str, SearchProvider] = {}
        for provider in providers:
            if provider.provider_id in self._providers:
                msg = f"Duplicate provider id: {provider.provider_id}"
                raise ValueError(msg)
            self._providers[provider.provider_id] = provider
        self._entitlements = entitlements or EntitlementTable()
        self._availability: TTLCache[str, bool] = TTLCache(maxsize=64, ttl=availability_ttl)

    @property
    def providers(self) -> list[SearchProvider]:
        return list(self._providers.values())

    def get(self, provider_id: str) -> SearchProvider | None:
        return self._providers.get(provider_id)

    def priorities(self) -> dict[str, int]:
        return {pid: p.priority for pid, p in self._providers.items()}

    async def _check_available(self, provider: SearchProvider) -> bool:
        cached = self._availability.get(provider.provider_id)
        if cached is not None and provider.quota.remaining > 0 and not provider.circuit_open:
            return cached
        try:
            available = await provider.is_available()
        except Exception as e:
            logger.warning(f"{provider.provider_id}: availability check raised {type(e).__name__}: {e}")
            available = False
        self._availability[provider.provider_id] = available
        return available

    def invalidate(self, provider_id: str | None = None) -> None:
        """Drop cached availability (all providers when no id is given)."""
        if provider_id is None:
            self._availability.clear()
        else:
            self._availability.pop(provider_id, None)

    async def select_providers(
        self,
        plan: PlanTier | str,
        allowed: Iterable[str] | None = None,
        priorities: dict[str, int] | None = None,
    ) -> list[SearchProvider]:
        """
        Entitled, allowed and available adapters, highest priority first.

        Args:
            plan: Requester plan tier
            allowed: Optional further restriction from the search config
            priorities: Priority weights overriding the adapters' own

        Returns:
            Possibly empty ordered list of adapters
        """
        plan = PlanTier(plan)
        allowed_set = set(allowed) if allowed is not None else None

        candidates = [
            p
            for p in self._providers.values()
            if self._entitlements.is_entitled(plan, p.provider_id)
            and (allowed_set is None or p.provider_id in allowed_set)
        ]
        checks = await asyncio.gather(*(self._check_available(p) for p in candidates))
        available = [p for p, ok in zip(candidates, checks, strict=True) if ok]

        weights = priorities or {}
        available.sort(key=lambda p: weights.get(p.provider_id, p.priority), reverse=True)

        skipped = [p.provider_id for p, ok in zip(candidates, checks, strict=True) if not ok]
        if skipped:
            logger.info(f"Unavailable providers skipped for plan {plan.value}: {skipped}")
        logger.debug(f"Selected providers for {plan.value}: {[p.provider_id for p in available]}")
        return available

    async def provider_stats(self) -> dict[str, dict[str, Any]]:
        stats = {}
        for provider in self._providers.values():
            stats[provider.provider_id] = {
                "enabled": provider.enabled,
                "available": await self._check_available(provider),
                "quota": provider.quota.snapshot(),
                "metadata": provider.metadata(),
            }
        return stats

    def validate(self) -> dict[str, Any]:
        """Configuration warnings across all adapters."""
        warnings = []
        for provider in self._providers.values():
            if provider.enabled:
                warnings.extend(provider.validate())
        if not any(p.enabled for p in self._providers.values()):
            warnings.append("No providers are enabled")
        return {"valid": not warnings, "warnings": warnings}

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
