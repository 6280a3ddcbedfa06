"""Domain Entities: what a search returns to its caller."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .result import ShapedResult


@dataclass(frozen=True)
class SearchSummary:
    total_results: int
    elapsed_ms: int
    providers_used: list[str] = field(default_factory=list)
    providers_failed: list[dict[str, str]] = field(default_factory=list)
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "total_results": self.total_results,
            "elapsed_ms": self.elapsed_ms,
            "providers_used": list(self.providers_used),
            "providers_failed": [dict(f) for f in self.providers_failed],
        }
        if self.message:
            data["message"] = self.message
        return data


@dataclass(frozen=True)
class SearchResponse:
    """
    Shaped results plus the opaque identifier of the persisted record.

    ``search_id`` is None only on a response attached to a PersistenceError.
    """

    search_id: str | None
    results: list[ShapedResult]
    summary: SearchSummary
    retried_from: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "search_id": self.search_id,
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
        }
        if self.retried_from:
            data["retried_from"] = self.retried_from
        return data
