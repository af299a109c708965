"""
Unit Tests - Rate Limiter
Tests for sliding window budgets, bounded waiting and usage reporting.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock

from quotefeed.data_providers.adapters.base import RateLimitError
from quotefeed.data_providers.rate_limiter import (
    RateLimiter,
    RateLimitConfig,
    WindowCounter,
)


class TestWindowCounter:
    """Tests for the sliding window counter."""

    def test_counts_until_limit(self, clock):
        counter = WindowCounter(limit=2, window_seconds=60, clock=clock)
        assert counter.can_proceed()
        counter.record_request()
        counter.record_request()
        assert not counter.can_proceed()
        assert counter.remaining() == 0

    def test_old_requests_expire(self, clock):
        counter = WindowCounter(limit=2, window_seconds=60, clock=clock)
        counter.record_request()
        clock.advance(30)
        counter.record_request()

        assert counter.time_until_available() == pytest.approx(30)

        clock.advance(30)
        assert counter.can_proceed()
        assert counter.used() == 1

    def test_resets_in_tracks_oldest_call(self, clock):
        counter = WindowCounter(limit=5, window_seconds=60, clock=clock)
        assert counter.resets_in() == 0.0
        counter.record_request()
        clock.advance(20)
        assert counter.resets_in() == pytest.approx(40)


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.mark.asyncio
    async def test_unconfigured_provider_is_never_gated(self, rate_limiter, clock):
        for _ in range(100):
            await rate_limiter.acquire_slot("unknown")
        assert clock.sleeps == []
        assert rate_limiter.can_proceed("unknown")

    @pytest.mark.asyncio
    async def test_calls_within_budget_do_not_wait(self, rate_limiter, clock):
        rate_limiter.configure("alpha_vantage", RateLimitConfig(requests_per_minute=5))

        for _ in range(5):
            await rate_limiter.acquire_slot("alpha_vantage")

        assert clock.sleeps == []
        assert rate_limiter.get_usage("alpha_vantage").calls_used == 5
        assert not rate_limiter.can_proceed("alpha_vantage")

    @pytest.mark.asyncio
    async def test_sixth_call_waits_for_oldest_to_expire(self, rate_limiter, clock):
        """5/minute ceiling: the 6th rapid request waits, then proceeds."""
        rate_limiter.configure("alpha_vantage", RateLimitConfig(requests_per_minute=5))
        granted = []

        for _ in range(5):
            await rate_limiter.acquire_slot("alpha_vantage")
            granted.append(clock())
            clock.advance(1)

        await rate_limiter.acquire_slot("alpha_vantage")
        granted.append(clock())

        assert clock.sleeps == [pytest.approx(55)]
        # Never more than 5 grants inside any sliding 60 s window
        for start in granted:
            assert sum(1 for t in granted if start <= t < start + 60) <= 5

    @pytest.mark.asyncio
    async def test_wait_longer_than_max_fails_immediately(self, rate_limiter, clock):
        rate_limiter.configure("coinapi", RateLimitConfig(requests_per_day=2))
        await rate_limiter.acquire_slot("coinapi")
        await rate_limiter.acquire_slot("coinapi")

        with pytest.raises(RateLimitError) as exc_info:
            await rate_limiter.acquire_slot("coinapi")

        assert clock.sleeps == []
        assert exc_info.value.retry_after > 60
        assert exc_info.value.provider == "coinapi"

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, clock):
        """A budget that never frees up fails after max_attempts checks."""
        sleep = AsyncMock()
        limiter = RateLimiter(max_attempts=3, max_wait_seconds=60, clock=clock, sleep=sleep)
        limiter.configure("fmp", RateLimitConfig(requests_per_minute=1))
        await limiter.acquire_slot("fmp")

        with pytest.raises(RateLimitError):
            await limiter.acquire_slot("fmp")

        assert sleep.await_count == 2
        assert limiter.get_usage("fmp").calls_used == 1

    @pytest.mark.asyncio
    async def test_single_attempt_override(self, rate_limiter, clock):
        rate_limiter.configure("fmp", RateLimitConfig(requests_per_minute=1))
        await rate_limiter.acquire_slot("fmp")

        with pytest.raises(RateLimitError):
            await rate_limiter.acquire_slot("fmp", max_attempts=1)
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_concurrent_callers_never_exceed_ceiling(self, clock):
        limiter = RateLimiter(max_attempts=1, clock=clock, sleep=AsyncMock())
        limiter.configure("twelve_data", RateLimitConfig(requests_per_minute=5))

        results = await asyncio.gather(
            *(limiter.acquire_slot("twelve_data") for _ in range(10)),
            return_exceptions=True,
        )

        granted = [r for r in results if r is None]
        refused = [r for r in results if isinstance(r, RateLimitError)]
        assert len(granted) == 5
        assert len(refused) == 5

    @pytest.mark.asyncio
    async def test_cancelled_wait_records_nothing(self, clock):
        blocker = asyncio.Event()

        async def blocking_sleep(seconds):
            await blocker.wait()

        limiter = RateLimiter(clock=clock, sleep=blocking_sleep)
        limiter.configure("coingecko", RateLimitConfig(requests_per_minute=1))
        await limiter.acquire_slot("coingecko")

        task = asyncio.create_task(limiter.acquire_slot("coingecko"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert limiter.get_usage("coingecko").calls_used == 1

    @pytest.mark.asyncio
    async def test_get_usage_snapshot(self, rate_limiter, clock):
        rate_limiter.configure("twelve_data", RateLimitConfig(requests_per_minute=8, requests_per_day=800))
        await rate_limiter.acquire_slot("twelve_data")
        clock.advance(10)

        usage = rate_limiter.get_usage("twelve_data")

        assert usage.calls_used == 1
        assert usage.calls_allowed == 8
        assert usage.daily_used == 1
        assert usage.daily_allowed == 800
        assert usage.resets_in_seconds == pytest.approx(50)
        assert usage.to_dict()["provider"] == "twelve_data"

    def test_usage_for_unconfigured_provider(self, rate_limiter):
        usage = rate_limiter.get_usage("nobody")
        assert usage.calls_used == 0
        assert usage.calls_allowed is None

    @pytest.mark.asyncio
    async def test_get_all_usage_and_reset(self, rate_limiter):
        rate_limiter.configure("fmp", RateLimitConfig(requests_per_minute=300, requests_per_day=250))
        rate_limiter.configure("coingecko", RateLimitConfig(requests_per_minute=30))
        await rate_limiter.acquire_slot("fmp")

        usage = rate_limiter.get_all_usage()
        assert set(usage) == {"fmp", "coingecko"}
        assert usage["fmp"].calls_used == 1

        rate_limiter.reset("fmp")
        assert rate_limiter.get_usage("fmp").calls_used == 0
        assert rate_limiter.get_usage("fmp").daily_used == 0
