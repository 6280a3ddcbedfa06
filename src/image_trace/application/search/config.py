"""
Search configuration resolution.

The effective configuration of one search is layered, later layers winning:

    plan entitlement -> search type -> security level -> per-search options

``max_results`` always stays within the plan's cap and providers are only
ever narrowed, never widened beyond the plan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from image_trace.domain.entities import SearchOptions, SearchType, SecurityLevel
from image_trace.infrastructure.providers import ProviderSearchOptions
from image_trace.shared.exceptions import InvalidParameterError

from .entitlements import PlanEntitlement

DEFAULT_MINIMUM_SIMILARITY = 70.0

DEFAULT_PRIORITIES: dict[str, int] = {
    "proprietary": 10,
    "tineye": 9,
    "google_vision": 8,
}


@dataclass(frozen=True)
class SearchConfig:
    """Effective settings of one search."""

    providers: tuple[str, ...]
    max_results: int
    max_results_per_provider: int
    minimum_similarity: float
    timeout_seconds: float
    search_type: SearchType = SearchType.GENERAL
    provider_priorities: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_PRIORITIES))

    def priority_of(self, provider_id: str) -> int:
        return self.provider_priorities.get(provider_id, 0)

    def provider_options(self) -> ProviderSearchOptions:
        return ProviderSearchOptions(
            max_results=self.max_results_per_provider,
            minimum_similarity=self.minimum_similarity,
            search_type=self.search_type,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "providers": list(self.providers),
            "max_results": self.max_results,
            "max_results_per_provider": self.max_results_per_provider,
            "minimum_similarity": self.minimum_similarity,
            "timeout_seconds": self.timeout_seconds,
            "search_type": self.search_type.value,
        }


# Search type overlays
_TYPE_MIN_SIMILARITY: dict[SearchType, float] = {
    SearchType.GENERAL: 75.0,
    SearchType.COPYRIGHT: 80.0,
    SearchType.REVENGE: 70.0,
}
_TYPE_PRIORITY_OVERRIDES: dict[SearchType, dict[str, int]] = {
    SearchType.REVENGE: {"proprietary": 15},
}

# Security level overlays
_FAST_PROVIDERS = ("proprietary", "tineye")


def _apply_security_level(cfg: dict[str, Any], level: SecurityLevel) -> None:
    if level == SecurityLevel.FAST:
        cfg["providers"] = tuple(p for p in cfg["providers"] if p in _FAST_PROVIDERS)
        cfg["max_results_per_provider"] = 15
        cfg["timeout_seconds"] = 15.0
    elif level == SecurityLevel.DEEP:
        cfg["max_results_per_provider"] = 50
        cfg["timeout_seconds"] = 60.0
        cfg["minimum_similarity"] = 50.0


def validate_options(options: SearchOptions) -> None:
    if options.max_results is not None and options.max_results < 1:
        raise InvalidParameterError("max_results", options.max_results, "a positive integer")
    if options.minimum_similarity is not None and not 0 <= options.minimum_similarity <= 100:
        raise InvalidParameterError("minimum_similarity", options.minimum_similarity, "a value in 0-100")


def resolve_search_config(
    entitlement: PlanEntitlement,
    search_type: SearchType = SearchType.GENERAL,
    options: SearchOptions | None = None,
    priorities: dict[str, int] | None = None,
) -> SearchConfig:
    """
    Merge plan, search type, security level and per-search options.

    Args:
        entitlement: The requester's plan entitlement
        search_type: Declared purpose of the search
        options: Caller overrides (security level, max results, min similarity)
        priorities: Base provider priority weights (defaults to DEFAULT_PRIORITIES)

    Returns:
        The effective SearchConfig
    """
    options = options or SearchOptions()
    validate_options(options)

    cfg: dict[str, Any] = {
        "providers": tuple(entitlement.providers),
        "max_results": entitlement.max_results,
        "max_results_per_provider": entitlement.max_results_per_provider,
        "minimum_similarity": DEFAULT_MINIMUM_SIMILARITY,
        "timeout_seconds": entitlement.timeout_seconds,
    }
    prio = dict(priorities or DEFAULT_PRIORITIES)

    cfg["minimum_similarity"] = _TYPE_MIN_SIMILARITY.get(search_type, cfg["minimum_similarity"])
    prio.update(_TYPE_PRIORITY_OVERRIDES.get(search_type, {}))

    _apply_security_level(cfg, options.security_level)

    if options.minimum_similarity is not None:
        cfg["minimum_similarity"] = float(options.minimum_similarity)
    if options.max_results is not None:
        cfg["max_results"] = min(options.max_results, entitlement.max_results)

    return SearchConfig(search_type=search_type, provider_priorities=prio, **cfg)
