"""
Account search allowance.

Accounts get a fixed number of searches per window. The window is rolling:
it restarts 30 days after the last reset, regardless of calendar months.
Anonymous requesters carry no allowance and are never limited here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from image_trace.domain.entities import RequesterContext
from image_trace.shared.exceptions import SearchLimitExceeded

from .entitlements import EntitlementTable

RESET_WINDOW = timedelta(days=30)


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class AllowanceStatus:
    limit: int | None
    used: int
    remaining: int | None
    reset_due: bool
    next_reset_at: datetime | None


class SearchAllowance:
    """Checks requester usage counters against the plan's search allowance."""

    def __init__(self, entitlements: EntitlementTable, window: timedelta = RESET_WINDOW) -> None:
        self._entitlements = entitlements
        self._window = window

    def should_reset(self, reset_at: datetime | None, now: datetime | None = None) -> bool:
        if reset_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return _aware(now) - _aware(reset_at) >= self._window

    def status(self, requester: RequesterContext, now: datetime | None = None) -> AllowanceStatus:
        now = now or datetime.now(timezone.utc)
        limit = requester.custom_search_limit
        if limit is None:
            limit = self._entitlements.for_plan(requester.plan).searches
        if requester.is_anonymous or limit is None:
            return AllowanceStatus(limit=None, used=0, remaining=None, reset_due=False, next_reset_at=None)

        reset_due = self.should_reset(requester.searches_reset_at, now)
        used = 0 if reset_due else requester.searches_used
        next_reset = None
        if requester.searches_reset_at is not None and not reset_due:
            next_reset = _aware(requester.searches_reset_at) + self._window
        return AllowanceStatus(
            limit=limit,
            used=used,
            remaining=max(0, limit - used),
            reset_due=reset_due,
            next_reset_at=next_reset,
        )

    def check(self, requester: RequesterContext, now: datetime | None = None) -> AllowanceStatus:
        """
        Raise SearchLimitExceeded when the requester has no searches left.

        Admins are never limited.
        """
        now = now or datetime.now(timezone.utc)
        status = self.status(requester, now)
        if requester.is_admin or status.remaining is None or status.remaining > 0:
            return status
        retry_after = None
        if status.next_reset_at is not None:
            retry_after = max(0.0, (status.next_reset_at - _aware(now)).total_seconds())
        raise SearchLimitExceeded(
            requester.plan.value,
            status.used,
            status.limit or 0,
            retry_after=retry_after,
        )
