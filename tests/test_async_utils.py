"""
Tests for async utilities - quota counters and circuit breaker.
"""

import asyncio

import pytest

from image_trace.shared.async_utils import CircuitBreaker, CircuitOpenError, QuotaCounter
from image_trace.shared.exceptions import ProviderQuotaError


class TestQuotaCounter:
    """Per-minute / per-day quota windows."""

    async def test_acquire_until_minute_window_exhausted(self):
        quota = QuotaCounter(per_minute=2, per_day=100)
        assert await quota.try_acquire()
        assert await quota.try_acquire()
        assert not await quota.try_acquire()
        assert quota.remaining == 0

    async def test_day_window_is_tighter(self):
        quota = QuotaCounter(per_minute=10, per_day=1)
        assert await quota.try_acquire()
        assert not await quota.try_acquire()
        assert quota.reset_in > 60

    async def test_minute_window_rolls_over(self):
        quota = QuotaCounter(per_minute=1, per_day=100)
        assert await quota.try_acquire()
        quota._minute_start -= 61
        assert quota.remaining == 1
        assert await quota.try_acquire()

    async def test_acquire_raises_quota_error(self):
        quota = QuotaCounter(per_minute=1, per_day=1)
        await quota.acquire("tineye")
        with pytest.raises(ProviderQuotaError) as exc_info:
            await quota.acquire("tineye")
        assert exc_info.value.provider == "tineye"
        assert exc_info.value.context.retry_after is not None

    async def test_concurrent_acquires_never_oversubscribe(self):
        quota = QuotaCounter(per_minute=5, per_day=100)
        granted = await asyncio.gather(*(quota.try_acquire() for _ in range(20)))
        assert sum(granted) == 5

    async def test_sync_remaining_from_upstream(self):
        quota = QuotaCounter(per_minute=100, per_day=150)
        await quota.sync_remaining(3)
        assert quota.remaining == 3

    async def test_sync_remaining_never_frees_slots(self):
        quota = QuotaCounter(per_minute=100, per_day=10)
        for _ in range(8):
            await quota.try_acquire()
        await quota.sync_remaining(9)
        assert quota.remaining == 2

    async def test_mark_exhausted_blocks(self):
        quota = QuotaCounter()
        await quota.mark_exhausted(30)
        assert quota.remaining == 0
        assert not await quota.try_acquire()
        assert 0 < quota.reset_in <= 30

    def test_snapshot(self):
        snap = QuotaCounter(per_minute=5, per_day=150).snapshot()
        assert snap["remaining"] == 5
        assert snap["per_day"] == 150


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    async def test_initial_state_closed(self):
        breaker = CircuitBreaker()
        assert breaker.state == "closed"
        assert not breaker.is_open

    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        for _ in range(2):
            with pytest.raises(RuntimeError):
                async with breaker:
                    raise RuntimeError("boom")
        assert breaker.is_open
        with pytest.raises(CircuitOpenError):
            async with breaker:
                pass

    async def test_half_open_recovers(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0.01)
        with pytest.raises(RuntimeError):
            async with breaker:
                raise RuntimeError("boom")
        await asyncio.sleep(0.02)
        assert not breaker.is_open
        async with breaker:
            pass
        assert breaker.state == "closed"

    async def test_cancellation_is_not_a_failure(self):
        breaker = CircuitBreaker(failure_threshold=1)

        async def call():
            async with breaker:
                await asyncio.sleep(10)

        task = asyncio.create_task(call())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert breaker.state == "closed"
