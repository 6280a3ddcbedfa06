"""
Async Utilities for provider calls.

Provides:
- Quota counters with per-minute / per-day windows (shared across searches)
- Circuit breaker for fault tolerance
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from .exceptions import ProviderQuotaError

logger = logging.getLogger(__name__)


# =============================================================================
# Quota Counter (fixed windows, lock-protected)
# =============================================================================


@dataclass
class QuotaCounter:
    """
    Request quota for one provider.

    Two windows are tracked: requests per minute and requests per day.
    Concurrent searches race to consult and decrement the same counter, so
    every mutation happens under an ``asyncio.Lock``.

    Example:
        quota = QuotaCounter(per_minute=10, per_day=1000)
        if await quota.try_acquire():
            await call_provider()
    """

    per_minute: int = 60
    per_day: int = 10_000
    _minute_used: int = field(init=False, default=0)
    _day_used: int = field(init=False, default=0)
    _minute_start: float = field(init=False)
    _day_start: float = field(init=False)
    _exhausted_until: float = field(init=False, default=0.0)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        now = time.monotonic()
        self._minute_start = now
        self._day_start = now

    def _roll(self, now: float) -> None:
        """Reset windows that have elapsed."""
        if now - self._minute_start >= 60.0:
            self._minute_start = now
            self._minute_used = 0
        if now - self._day_start >= 86_400.0:
            self._day_start = now
            self._day_used = 0

    @property
    def remaining(self) -> int:
        """Requests left before either window is exhausted (lock-free snapshot)."""
        now = time.monotonic()
        if now < self._exhausted_until:
            return 0
        minute_used = 0 if now - self._minute_start >= 60.0 else self._minute_used
        day_used = 0 if now - self._day_start >= 86_400.0 else self._day_used
        return max(0, min(self.per_minute - minute_used, self.per_day - day_used))

    @property
    def reset_in(self) -> float:
        """Seconds until the tightest window frees a slot."""
        now = time.monotonic()
        if now < self._exhausted_until:
            return self._exhausted_until - now
        if self._day_used >= self.per_day:
            return max(0.0, 86_400.0 - (now - self._day_start))
        return max(0.0, 60.0 - (now - self._minute_start))

    async def try_acquire(self) -> bool:
        """Reserve one request. Returns False when the quota is exhausted."""
        async with self._lock:
            now = time.monotonic()
            if now < self._exhausted_until:
                return False
            self._roll(now)
            if self._minute_used >= self.per_minute or self._day_used >= self.per_day:
                return False
            self._minute_used += 1
            self._day_used += 1
            return True

    async def acquire(self, provider: str = "") -> None:
        """Reserve one request or raise ProviderQuotaError."""
        if not await self.try_acquire():
            raise ProviderQuotaError(provider=provider, retry_after=self.reset_in)

    async def sync_remaining(self, remaining: int) -> None:
        """Align the day window with a remaining count reported upstream."""
        async with self._lock:
            self._roll(time.monotonic())
            self._day_used = max(self._day_used, self.per_day - max(0, remaining))

    async def mark_exhausted(self, retry_after: float = 60.0) -> None:
        """Block the counter after an upstream 429 until ``retry_after`` passes."""
        async with self._lock:
            self._exhausted_until = time.monotonic() + retry_after
            logger.warning(f"Quota marked exhausted for {retry_after:.0f}s")

    def snapshot(self) -> dict[str, Any]:
        return {
            "remaining": self.remaining,
            "per_minute": self.per_minute,
            "per_day": self.per_day,
            "reset_in_seconds": round(self.reset_in, 1),
        }


# =============================================================================
# Circuit Breaker Pattern
# =============================================================================


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for fault tolerance.

    States:
    - CLOSED: Normal operation
    - OPEN: Failing, reject requests immediately
    - HALF_OPEN: Testing if service recovered

    Example:
        breaker = CircuitBreaker(failure_threshold=5)

        async with breaker:
            result = await risky_api_call()
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    half_open_max_calls: int = 3

    _failure_count: int = field(init=False, default=0)
    _last_failure_time: float | None = field(init=False, default=None)
    _state: str = field(init=False, default="closed")
    _half_open_calls: int = field(init=False, default=0)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    @property
    def is_open(self) -> bool:
        """Check if circuit is open (rejecting requests)."""
        if self._state == "open":
            if self._last_failure_time:
                if time.monotonic() - self._last_failure_time > self.recovery_timeout:
                    return False  # Move to half-open
            return True
        return False

    @property
    def state(self) -> str:
        return self._state

    async def __aenter__(self) -> CircuitBreaker:
        async with self._lock:
            if self.is_open:
                raise CircuitOpenError(self.recovery_timeout)

            if self._state == "open":
                self._state = "half_open"
                self._half_open_calls = 0

            if self._state == "half_open":
                if self._half_open_calls >= self.half_open_max_calls:
                    raise CircuitOpenError(self.recovery_timeout / 2)
                self._half_open_calls += 1

        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        async with self._lock:
            if exc_val is not None and not isinstance(exc_val, asyncio.CancelledError):
                self._failure_count += 1
                self._last_failure_time = time.monotonic()

                if self._failure_count >= self.failure_threshold:
                    self._state = "open"
                    logger.warning(f"Circuit breaker opened after {self._failure_count} failures")
            elif exc_val is None:
                if self._state == "half_open":
                    self._state = "closed"
                    self._failure_count = 0
                    logger.info("Circuit breaker closed (recovered)")
                elif self._state == "closed":
                    self._failure_count = max(0, self._failure_count - 1)


class CircuitOpenError(Exception):
    """Raised by CircuitBreaker when it rejects a call."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Circuit breaker is open (retry after {retry_after:.0f}s)")
        self.retry_after = retry_after
