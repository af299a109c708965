"""
Rate Limiter

Sliding window call budgets per provider.
Supports a per-minute window and an optional per-day window.
"""
import asyncio
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Optional, Callable, Awaitable
from loguru import logger

from quotefeed.data_providers.adapters.base import RateLimitError


MINUTE = 60.0
DAY = 86400.0


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting (None or 0 = no ceiling)."""
    requests_per_minute: Optional[int] = None
    requests_per_day: Optional[int] = None


@dataclass
class RateBudgetUsage:
    """Snapshot of a provider's budget for usage monitoring."""
    provider: str
    calls_used: int
    calls_allowed: Optional[int]
    resets_in_seconds: float
    daily_used: int = 0
    daily_allowed: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "calls_used": self.calls_used,
            "calls_allowed": self.calls_allowed,
            "resets_in_seconds": round(self.resets_in_seconds, 2),
            "daily_used": self.daily_used,
            "daily_allowed": self.daily_allowed,
        }


@dataclass
class WindowCounter:
    """Sliding window counter for rate limiting."""
    limit: int
    window_seconds: float
    clock: Callable[[], float] = time.monotonic
    requests: deque = field(default_factory=deque)

    def can_proceed(self) -> bool:
        """Check if we can make a request within the limit."""
        self._cleanup()
        return len(self.requests) < self.limit

    def record_request(self) -> None:
        """Record a new request."""
        self._cleanup()
        self.requests.append(self.clock())

    def _cleanup(self) -> None:
        """Remove expired requests from the window."""
        cutoff = self.clock() - self.window_seconds
        while self.requests and self.requests[0] <= cutoff:
            self.requests.popleft()

    def time_until_available(self) -> float:
        """Calculate seconds until a slot is available."""
        self._cleanup()
        if len(self.requests) < self.limit:
            return 0.0

        # Oldest call that must expire to bring the count below the limit
        oldest = self.requests[len(self.requests) - self.limit]
        return max(0.0, oldest + self.window_seconds - self.clock())

    def used(self) -> int:
        self._cleanup()
        return len(self.requests)

    def remaining(self) -> int:
        """Get remaining requests in current window."""
        return max(0, self.limit - self.used())

    def resets_in(self) -> float:
        """Seconds until the oldest recorded call leaves the window."""
        self._cleanup()
        if not self.requests:
            return 0.0
        return max(0.0, self.requests[0] + self.window_seconds - self.clock())


class RateLimiter:
    """
    Rate limiter with a per-minute and an optional per-day window.

    `acquire_slot` records the call atomically under the provider lock when
    every window has room. When a window is full the caller sleeps (outside
    the lock) until the oldest call expires, then checks again. After
    `max_attempts` checks, or when the required wait exceeds
    `max_wait_seconds`, it raises RateLimitError instead of waiting.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        max_wait_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.max_wait_seconds = max_wait_seconds
        self._clock = clock
        self._sleep = sleep
        self._minute_counters: dict[str, WindowCounter] = {}
        self._day_counters: dict[str, WindowCounter] = {}
        self._configs: dict[str, RateLimitConfig] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def configure(self, provider: str, config: RateLimitConfig) -> None:
        """Configure rate limits for a provider."""
        self._configs[provider] = config
        self._minute_counters.pop(provider, None)
        self._day_counters.pop(provider, None)

        if config.requests_per_minute:
            self._minute_counters[provider] = WindowCounter(
                limit=config.requests_per_minute,
                window_seconds=MINUTE,
                clock=self._clock,
            )

        if config.requests_per_day:
            self._day_counters[provider] = WindowCounter(
                limit=config.requests_per_day,
                window_seconds=DAY,
                clock=self._clock,
            )

        logger.info(f"Rate limiter configured for {provider}: {config}")

    def is_configured(self, provider: str) -> bool:
        return provider in self._configs

    async def acquire_slot(self, provider: str, max_attempts: Optional[int] = None) -> None:
        """
        Acquire a call slot for a provider, waiting if necessary.

        Args:
            provider: Provider name
            max_attempts: Override for the number of budget checks

        Raises:
            RateLimitError: If no slot could be acquired within the bounds
        """
        if provider not in self._configs:
            # No rate limit configured, allow all
            return

        attempts = max_attempts if max_attempts is not None else self.max_attempts
        wait_time = 0.0

        for attempt in range(1, attempts + 1):
            async with self._locks[provider]:
                wait_time = self._calculate_wait_time(provider)
                if wait_time <= 0:
                    self._record(provider)
                    return

            if attempt >= attempts or wait_time > self.max_wait_seconds:
                break

            logger.debug(
                f"Rate limit: waiting {wait_time:.2f}s for {provider} "
                f"(attempt {attempt}/{attempts})"
            )
            await self._sleep(wait_time)

        logger.warning(f"Rate limit exhausted for {provider}, retry after {wait_time:.1f}s")
        raise RateLimitError(provider, retry_after=round(wait_time, 2))

    def can_proceed(self, provider: str) -> bool:
        """
        Check if a request can proceed without waiting.

        Args:
            provider: Provider name

        Returns:
            True if request can proceed immediately
        """
        if provider not in self._configs:
            return True

        return self._calculate_wait_time(provider) == 0.0

    def _record(self, provider: str) -> None:
        minute_counter = self._minute_counters.get(provider)
        if minute_counter:
            minute_counter.record_request()

        day_counter = self._day_counters.get(provider)
        if day_counter:
            day_counter.record_request()

    def _calculate_wait_time(self, provider: str) -> float:
        """Calculate how long to wait before a request can proceed."""
        wait_times = [0.0]

        minute_counter = self._minute_counters.get(provider)
        if minute_counter:
            wait_times.append(minute_counter.time_until_available())

        day_counter = self._day_counters.get(provider)
        if day_counter:
            wait_times.append(day_counter.time_until_available())

        return max(wait_times)

    def get_usage(self, provider: str) -> RateBudgetUsage:
        """
        Get current budget usage for a provider.

        Args:
            provider: Provider name

        Returns:
            RateBudgetUsage snapshot (zeros for unconfigured providers)
        """
        minute_counter = self._minute_counters.get(provider)
        day_counter = self._day_counters.get(provider)

        return RateBudgetUsage(
            provider=provider,
            calls_used=minute_counter.used() if minute_counter else 0,
            calls_allowed=minute_counter.limit if minute_counter else None,
            resets_in_seconds=minute_counter.resets_in() if minute_counter else 0.0,
            daily_used=day_counter.used() if day_counter else 0,
            daily_allowed=day_counter.limit if day_counter else None,
        )

    def get_all_usage(self) -> dict[str, RateBudgetUsage]:
        """Get usage for every configured provider."""
        return {provider: self.get_usage(provider) for provider in self._configs}

    def reset(self, provider: Optional[str] = None) -> None:
        """Forget recorded calls for one provider, or all of them."""
        providers = [provider] if provider else list(self._configs)
        for name in providers:
            for counters in (self._minute_counters, self._day_counters):
                counter = counters.get(name)
                if counter:
                    counter.requests.clear()
            logger.info(f"Rate limit counters reset for {name}")
