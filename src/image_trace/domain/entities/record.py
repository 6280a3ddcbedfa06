"""
Domain Entities: audit trail of a search.

- ProcessingLog: append-only step list, frozen once the search is persisted
- UsageReport: per-provider outcome of one orchestration
- SearchRecord: the durable audit entity written by the persistence layer
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SearchStatus(str, Enum):
    """Lifecycle of a SearchRecord: processing -> completed | failed."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def can_transition_to(self, target: SearchStatus) -> bool:
        return self == SearchStatus.PROCESSING and target in (SearchStatus.COMPLETED, SearchStatus.FAILED)


# =============================================================================
# Processing log
# =============================================================================


@dataclass(frozen=True)
class ProcessingStep:
    """One entry of the processing log."""

    step: str
    timestamp: datetime = field(default_factory=_utcnow)
    duration_ms: int | None = None
    provider: str | None = None
    success: bool = True
    error: str | None = None
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "step": self.step,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
        }
        if self.duration_ms is not None:
            data["duration_ms"] = self.duration_ms
        if self.provider:
            data["provider"] = self.provider
        if self.error:
            data["error"] = self.error
        if self.warning:
            data["warning"] = self.warning
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProcessingStep:
        return cls(
            step=data["step"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            duration_ms=data.get("duration_ms"),
            provider=data.get("provider"),
            success=data.get("success", True),
            error=data.get("error"),
            warning=data.get("warning"),
        )


class ProcessingLog:
    """
    Ordered, append-only record of the steps a search went through.

    Once :meth:`freeze` is called the log becomes immutable; further appends
    raise ``RuntimeError``.
    """

    def __init__(self) -> None:
        self._steps: list[ProcessingStep] = []
        self._frozen = False

    def append(self, step: str, **details: Any) -> ProcessingStep:
        if self._frozen:
            msg = "ProcessingLog is frozen"
            raise RuntimeError(msg)
        entry = ProcessingStep(step=step, **details)
        self._steps.append(entry)
        return entry

    def freeze(self) -> tuple[ProcessingStep, ...]:
        self._frozen = True
        return tuple(self._steps)

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def steps(self) -> tuple[ProcessingStep, ...]:
        return tuple(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self):
        return iter(self._steps)


# =============================================================================
# Usage report
# =============================================================================


@dataclass(frozen=True)
class ProviderUsage:
    """Outcome of one provider call within a search."""

    provider: str
    attempted: bool = True
    succeeded: bool = False
    error: str | None = None
    result_count: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "error": self.error,
            "result_count": self.result_count,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderUsage:
        return cls(
            provider=data["provider"],
            attempted=data.get("attempted", True),
            succeeded=data.get("succeeded", False),
            error=data.get("error"),
            result_count=data.get("result_count", 0),
            duration_ms=data.get("duration_ms", 0),
        )


@dataclass(frozen=True)
class UsageReport:
    """Per-provider usage plus the overall outcome of an orchestration."""

    usage: tuple[ProviderUsage, ...]
    outcome: SearchStatus
    deadline_exceeded: bool = False
    reason: str | None = None
    elapsed_ms: int = 0

    @property
    def providers_used(self) -> list[str]:
        return [u.provider for u in self.usage if u.succeeded]

    @property
    def providers_failed(self) -> list[dict[str, str]]:
        return [{"provider": u.provider, "error": u.error or "unknown"} for u in self.usage if not u.succeeded]

    @property
    def all_failed(self) -> bool:
        return not self.providers_used

    def to_dict(self) -> dict[str, Any]:
        return {
            "usage": [u.to_dict() for u in self.usage],
            "outcome": self.outcome.value,
            "deadline_exceeded": self.deadline_exceeded,
            "reason": self.reason,
            "elapsed_ms": self.elapsed_ms,
        }


# =============================================================================
# Search record
# =============================================================================


@dataclass
class SearchRecord:
    """
    Durable audit entity of one search.

    Image bytes and full results are only ever present as ciphertext:
    ``encrypted_image_ref`` holds the encrypted blob-store key of the
    encrypted image, ``encrypted_results`` the encrypted result set.
    """

    search_id: str
    search_type: str
    account_id: str | None = None
    owner_plan: str = "anonymous"
    created_at: datetime = field(default_factory=_utcnow)
    status: SearchStatus = SearchStatus.PROCESSING
    encrypted_image_ref: str | None = None
    image_hash: str | None = None
    encrypted_results: str | None = None
    provider_usage: list[ProviderUsage] = field(default_factory=list)
    providers_used: list[str] = field(default_factory=list)
    providers_failed: list[dict[str, str]] = field(default_factory=list)
    elapsed_ms: int = 0
    result_count: int = 0
    processing_log: tuple[ProcessingStep, ...] = ()
    retried_from: str | None = None
    failure_reason: str | None = None
    completed_at: datetime | None = None

    def transition(self, target: SearchStatus) -> None:
        if not self.status.can_transition_to(target):
            msg = f"Invalid status transition {self.status.value} -> {target.value}"
            raise ValueError(msg)
        self.status = target
        self.completed_at = _utcnow()

    @property
    def is_minimal(self) -> bool:
        """Fallback records carry no encrypted payloads."""
        return self.encrypted_results is None and self.encrypted_image_ref is None

    def summary(self) -> dict[str, Any]:
        """Public, non-sensitive view used for history listings."""
        return {
            "search_id": self.search_id,
            "search_type": self.search_type,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "result_count": self.result_count,
            "providers_used": list(self.providers_used),
            "providers_failed": [dict(f) for f in self.providers_failed],
            "elapsed_ms": self.elapsed_ms,
            "retried_from": self.retried_from,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "search_id": self.search_id,
            "search_type": self.search_type,
            "account_id": self.account_id,
            "owner_plan": self.owner_plan,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "encrypted_image_ref": self.encrypted_image_ref,
            "image_hash": self.image_hash,
            "encrypted_results": self.encrypted_results,
            "provider_usage": [u.to_dict() for u in self.provider_usage],
            "providers_used": list(self.providers_used),
            "providers_failed": [dict(f) for f in self.providers_failed],
            "elapsed_ms": self.elapsed_ms,
            "result_count": self.result_count,
            "processing_log": [s.to_dict() for s in self.processing_log],
            "retried_from": self.retried_from,
            "failure_reason": self.failure_reason,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchRecord:
        completed = data.get("completed_at")
        return cls(
            search_id=data["search_id"],
            search_type=data["search_type"],
            account_id=data.get("account_id"),
            owner_plan=data.get("owner_plan", "anonymous"),
            created_at=datetime.fromisoformat(data["created_at"]),
            status=SearchStatus(data.get("status", SearchStatus.PROCESSING.value)),
            encrypted_image_ref=data.get("encrypted_image_ref"),
            image_hash=data.get("image_hash"),
            encrypted_results=data.get("encrypted_results"),
            provider_usage=[ProviderUsage.from_dict(u) for u in data.get("provider_usage", [])],
            providers_used=list(data.get("providers_used", [])),
            providers_failed=[dict(f) for f in data.get("providers_failed", [])],
            elapsed_ms=data.get("elapsed_ms", 0),
            result_count=data.get("result_count", 0),
            processing_log=tuple(ProcessingStep.from_dict(s) for s in data.get("processing_log", [])),
            retried_from=data.get("retried_from"),
            failure_reason=data.get("failure_reason"),
            completed_at=datetime.fromisoformat(completed) if completed else None,
        )
