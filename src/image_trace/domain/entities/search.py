"""
Domain Entities: search input.

A search is described by the image payload, what kind of search the caller
wants, who is asking, and optional per-search overrides. The requester is a
plain value resolved by the surrounding application; nothing here reads
ambient request state.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class PlanTier(str, Enum):
    """Subscription tier of the requester."""

    ANONYMOUS = "anonymous"
    FREE = "free"
    BASIC = "basic"
    PRO = "pro"

    @property
    def is_premium(self) -> bool:
        return self in (PlanTier.BASIC, PlanTier.PRO)


class SearchType(str, Enum):
    """Declared purpose of a search."""

    GENERAL = "general_search"
    COPYRIGHT = "copyright_detection"
    REVENGE = "revenge_detection"


class SecurityLevel(str, Enum):
    """Depth/speed trade-off requested by the caller."""

    FAST = "fast"
    STANDARD = "standard"
    DEEP = "deep"


@dataclass(frozen=True)
class SearchOptions:
    """Per-search overrides. ``None`` means "use the resolved default"."""

    max_results: int | None = None
    minimum_similarity: float | None = None
    security_level: SecurityLevel = SecurityLevel.STANDARD

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SearchOptions:
        data = data or {}
        level = data.get("security_level") or SecurityLevel.STANDARD
        return cls(
            max_results=data.get("max_results"),
            minimum_similarity=data.get("minimum_similarity"),
            security_level=SecurityLevel(level),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_results": self.max_results,
            "minimum_similarity": self.minimum_similarity,
            "security_level": self.security_level.value,
        }


@dataclass(frozen=True)
class RequesterContext:
    """
    Pre-resolved identity of the caller.

    ``account_id`` is None for anonymous callers. The usage counters are only
    consulted by the search allowance check and may be left at their defaults.
    """

    account_id: str | None = None
    plan: PlanTier = PlanTier.ANONYMOUS
    is_admin: bool = False
    searches_used: int = 0
    searches_reset_at: datetime | None = None
    custom_search_limit: int | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.account_id is None

    def owns(self, account_id: str | None) -> bool:
        """Whether this requester may read a record owned by ``account_id``."""
        if self.is_admin:
            return True
        return account_id is not None and account_id == self.account_id


@dataclass(frozen=True)
class SearchQuery:
    """
    Immutable input unit of one search.

    Build with :meth:`create`, which derives the content hash. The query is
    never persisted as such: the persistence writer stores an encrypted copy
    of ``image_bytes``.
    """

    image_bytes: bytes
    search_type: SearchType
    requester: RequesterContext
    options: SearchOptions = field(default_factory=SearchOptions)
    image_hash: str = ""
    mime_type: str = "application/octet-stream"

    @classmethod
    def create(
        cls,
        image_bytes: bytes,
        search_type: SearchType | str = SearchType.GENERAL,
        requester: RequesterContext | None = None,
        options: SearchOptions | None = None,
        mime_type: str = "application/octet-stream",
    ) -> SearchQuery:
        return cls(
            image_bytes=image_bytes,
            search_type=SearchType(search_type),
            requester=requester or RequesterContext(),
            options=options or SearchOptions(),
            image_hash=hashlib.sha256(image_bytes).hexdigest(),
            mime_type=mime_type,
        )

    def __repr__(self) -> str:
        # Never dump image bytes into logs
        return (
            f"SearchQuery(search_type={self.search_type.value!r}, "
            f"account_id={self.requester.account_id!r}, image_hash={self.image_hash[:12]!r}, "
            f"size={len(self.image_bytes)})"
        )


@dataclass
class SearchRequest:
    """
    Raw search request as received from a caller.

    Exactly one of ``image_bytes`` (raw bytes or a base64 data URL string)
    and ``image_reference`` (http/https URL) is expected.
    """

    requester: RequesterContext
    image_bytes: bytes | str | None = None
    image_reference: str | None = None
    search_type: SearchType = SearchType.GENERAL
    options: SearchOptions = field(default_factory=SearchOptions)
