"""
Search use cases.

Pipeline: registry (selection) -> orchestrator (fan-out) -> result_aggregator
(merge / rank) -> access_shaper (plan view), coordinated by SearchService.
"""

from .access_shaper import AccessShaper, ViewPolicy
from .allowance import SearchAllowance
from .config import SearchConfig, resolve_search_config
from .entitlements import EntitlementTable, PlanEntitlement
from .orchestrator import SearchOrchestrator
from .registry import ProviderRegistry
from .result_aggregator import AggregationStats, ResultAggregator
from .service import SearchService

__all__ = [
    "AccessShaper",
    "AggregationStats",
    "EntitlementTable",
    "PlanEntitlement",
    "ProviderRegistry",
    "ResultAggregator",
    "SearchAllowance",
    "SearchConfig",
    "SearchOrchestrator",
    "SearchService",
    "ViewPolicy",
    "resolve_search_config",
]
