"""
Domain Entities

Core business objects for reverse image search.
"""

from __future__ import annotations

from .record import (
    ProcessingLog,
    ProcessingStep,
    ProviderUsage,
    SearchRecord,
    SearchStatus,
    UsageReport,
)
from .response import SearchResponse, SearchSummary
from .result import (
    AggregatedResult,
    ProviderResult,
    ResultStatus,
    ShapedResult,
    result_id_for,
)
from .search import (
    PlanTier,
    RequesterContext,
    SearchOptions,
    SearchQuery,
    SearchRequest,
    SearchType,
    SecurityLevel,
)

__all__ = [
    # Search input
    "PlanTier",
    "RequesterContext",
    "SearchOptions",
    "SearchQuery",
    "SearchRequest",
    "SearchType",
    "SecurityLevel",
    # Results
    "AggregatedResult",
    "ProviderResult",
    "ResultStatus",
    "ShapedResult",
    "result_id_for",
    # Audit
    "ProcessingLog",
    "ProcessingStep",
    "ProviderUsage",
    "SearchRecord",
    "SearchStatus",
    "UsageReport",
    # Response
    "SearchResponse",
    "SearchSummary",
]
