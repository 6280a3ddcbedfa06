"""
Domain Entities: search results.

Three shapes of the same match:
- ProviderResult: one match as returned by one provider
- AggregatedResult: a URL-unique match after merging all providers
- ShapedResult: the plan-specific view handed to the caller
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ResultStatus(str, Enum):
    """Classification of a match."""

    FOUND = "found"
    PENDING_REVIEW = "pending-review"
    VIOLATION = "violation"

    @property
    def severity(self) -> int:
        return _STATUS_SEVERITY[self]

    @classmethod
    def most_severe(cls, *statuses: ResultStatus) -> ResultStatus:
        return max(statuses, key=lambda s: s.severity)


_STATUS_SEVERITY = {
    ResultStatus.FOUND: 0,
    ResultStatus.PENDING_REVIEW: 1,
    ResultStatus.VIOLATION: 2,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def result_id_for(url: str) -> str:
    """Deterministic identifier of a result URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class ProviderResult:
    """One match from one provider. ``similarity`` is on a 0-100 scale."""

    url: str
    site_name: str
    similarity: float
    provider: str
    title: str = ""
    status: ResultStatus = ResultStatus.FOUND
    thumbnail: str | None = None
    page_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    detected_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "site_name": self.site_name,
            "title": self.title,
            "similarity": self.similarity,
            "status": self.status.value,
            "thumbnail": self.thumbnail,
            "page_url": self.page_url,
            "provider": self.provider,
            "metadata": dict(self.metadata),
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class AggregatedResult:
    """A merged, URL-unique match. ``providers`` is ordered by provider priority."""

    result_id: str
    url: str
    site_name: str
    similarity: float
    providers: tuple[str, ...]
    title: str = ""
    status: ResultStatus = ResultStatus.FOUND
    thumbnail: str | None = None
    page_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    detected_at: datetime = field(default_factory=_utcnow)

    @property
    def provider(self) -> str:
        """Primary (highest priority) contributing provider."""
        return self.providers[0] if self.providers else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "result_id": self.result_id,
            "url": self.url,
            "site_name": self.site_name,
            "title": self.title,
            "similarity": self.similarity,
            "status": self.status.value,
            "thumbnail": self.thumbnail,
            "page_url": self.page_url,
            "providers": list(self.providers),
            "metadata": dict(self.metadata),
            "detected_at": self.detected_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AggregatedResult:
        detected = data.get("detected_at")
        return cls(
            result_id=data.get("result_id") or result_id_for(data["url"]),
            url=data["url"],
            site_name=data.get("site_name", ""),
            similarity=float(data.get("similarity", 0.0)),
            providers=tuple(data.get("providers", ())),
            title=data.get("title", ""),
            status=ResultStatus(data.get("status", ResultStatus.FOUND.value)),
            thumbnail=data.get("thumbnail"),
            page_url=data.get("page_url"),
            metadata=dict(data.get("metadata") or {}),
            detected_at=datetime.fromisoformat(detected) if detected else _utcnow(),
        )


@dataclass(frozen=True)
class ShapedResult:
    """Plan-specific view of an AggregatedResult. ``None`` fields are redacted."""

    result_id: str
    site_name: str
    similarity: float
    status: ResultStatus
    title: str
    url: str | None = None
    page_url: str | None = None
    thumbnail: str | None = None
    metadata: dict[str, Any] | None = None
    providers: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize, omitting redacted fields entirely."""
        data: dict[str, Any] = {
            "result_id": self.result_id,
            "site_name": self.site_name,
            "similarity": self.similarity,
            "status": self.status.value,
            "title": self.title,
        }
        if self.url is not None:
            data["url"] = self.url
        if self.page_url is not None:
            data["page_url"] = self.page_url
        if self.thumbnail is not None:
            data["thumbnail"] = self.thumbnail
        if self.metadata is not None:
            data["metadata"] = dict(self.metadata)
        if self.providers is not None:
            data["providers"] = list(self.providers)
        return data
