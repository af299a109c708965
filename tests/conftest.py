"""
Quotefeed - Test Configuration
Shared fixtures and test doubles.
"""
import asyncio
import fnmatch
import json
import os
from decimal import Decimal
from typing import Any, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from quotefeed.data_providers.adapters.base import (
    AssetClass,
    BaseAdapter,
    PriceQuote,
    ProviderConfig,
)
from quotefeed.data_providers.cache_manager import CacheConfig, ResponseCache
from quotefeed.data_providers.credentials import CredentialStore
from quotefeed.data_providers.failover import ProviderRegistry
from quotefeed.data_providers.quote_service import QuoteService
from quotefeed.data_providers.rate_limiter import RateLimiter

# Set test environment
os.environ["APP_ENV"] = "testing"


# =========================
# Clock
# =========================

class FakeClock:
    """Manually advanced clock; `sleep` advances it instead of waiting."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =========================
# Redis
# =========================

class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio the cache uses."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.strings: dict[str, str] = {}
        self.fail = False
        # Only MULTI/EXEC fails; single commands keep working
        self.fail_transactions = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def ping(self) -> bool:
        self._check()
        return True

    def _hset(self, key: str, mapping: dict[str, Any]) -> int:
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})
        return len(mapping)

    async def hgetall(self, key: str) -> dict[str, str]:
        self._check()
        return dict(self.hashes.get(key, {}))

    def _set(self, key: str, value: Any) -> bool:
        self.strings[key] = str(value)
        return True

    async def hset(self, key: str, mapping: dict[str, Any]) -> int:
        self._check()
        return self._hset(key, mapping)

    async def set(self, key: str, value: Any) -> bool:
        self._check()
        return self._set(key, value)

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.strings.get(key)

    async def delete(self, *keys: str) -> int:
        self._check()
        return self._delete(*keys)

    def _delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self.hashes.pop(key, None) is not None:
                deleted += 1
            if self.strings.pop(key, None) is not None:
                deleted += 1
        return deleted

    async def scan_iter(self, match: str = "*"):
        self._check()
        for key in list(self.hashes) + list(self.strings):
            if fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def aclose(self) -> None:
        self.closed = True


class FakePipeline:
    """Queues commands and applies them all at once on execute(), or none of them."""

    def __init__(self, redis: FakeRedis):
        self._redis = redis
        self._commands: list[tuple[str, tuple, dict]] = []

    def _queue(self, name: str, *args: Any, **kwargs: Any) -> "FakePipeline":
        self._commands.append((name, args, kwargs))
        return self

    def delete(self, *keys: str) -> "FakePipeline":
        return self._queue("_delete", *keys)

    def hset(self, key: str, mapping: dict[str, Any]) -> "FakePipeline":
        return self._queue("_hset", key, mapping=mapping)

    def set(self, key: str, value: Any) -> "FakePipeline":
        return self._queue("_set", key, value)

    async def execute(self) -> list[Any]:
        commands, self._commands = self._commands, []
        self._redis._check()
        if self._redis.fail_transactions:
            raise RedisConnectionError("Connection lost during EXEC")
        return [getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in commands]


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# =========================
# HTTP
# =========================

class FakeResponse:
    """Mimics the aiohttp response used inside `async with session.get(...)`."""

    def __init__(self, payload: Any = None, status: int = 200, body: Optional[str] = None):
        self.payload = payload
        self.status = status
        self.body = body

    async def json(self, content_type=None):
        if self.body is not None:
            return json.loads(self.body)
        return self.payload

    async def text(self) -> str:
        if self.body is not None:
            return self.body
        return json.dumps(self.payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class _RaisingContext:
    def __init__(self, error: BaseException):
        self.error = error

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """Returns queued responses (or raises queued exceptions) in call order."""

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    def respond(self, payload: Any = None, status: int = 200, body: Optional[str] = None) -> None:
        self.responses.append(FakeResponse(payload, status=status, body=body))

    def get(self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None):
        self.calls.append({"url": url, "params": params or {}, "headers": headers or {}})
        if not self.responses:
            raise AssertionError(f"Unexpected request to {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            return _RaisingContext(item)
        if not isinstance(item, FakeResponse):
            item = FakeResponse(item)
        return item

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def credentials() -> CredentialStore:
    return CredentialStore({
        "cryptocompare": "cc-key",
        "coingecko": "",
        "coinapi": "coinapi-key",
        "fmp": "fmp-key",
        "alpha_vantage": "av-key",
        "twelve_data": "td-key",
    })


# =========================
# Stub Adapters
# =========================

class StubAdapter(BaseAdapter):
    """Adapter with scripted outcomes that counts its calls."""

    def __init__(
        self,
        name: str,
        credentials: CredentialStore,
        priorities: Optional[dict[AssetClass, int]] = None,
        price: Decimal = Decimal("100"),
        error: Optional[BaseException] = None,
        requires_api_key: bool = False,
        gate: Optional[asyncio.Event] = None,
    ):
        config = ProviderConfig(
            name=name,
            requests_per_minute=0,
            priorities=priorities or {AssetClass.CRYPTO: 10, AssetClass.EQUITY: 10},
            requires_api_key=requires_api_key,
        )
        super().__init__(config, credentials)
        self.price = price
        self.error = error
        self.gate = gate
        self.calls: list[tuple[str, AssetClass]] = []
        self.started = asyncio.Event()

    async def fetch_quote(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        self.calls.append((symbol, asset_class))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self._build_quote(symbol, asset_class, self.price)

    @property
    def call_count(self) -> int:
        return len(self.calls)


@pytest.fixture
def make_stub(credentials):
    def _make(name: str, **kwargs) -> StubAdapter:
        return StubAdapter(name, credentials, **kwargs)
    return _make


@pytest.fixture
def rate_limiter(clock) -> RateLimiter:
    return RateLimiter(max_attempts=3, max_wait_seconds=60.0, clock=clock, sleep=clock.sleep)


@pytest.fixture
def registry(rate_limiter) -> ProviderRegistry:
    return ProviderRegistry(rate_limiter)


@pytest.fixture
def cache(fake_redis, clock) -> ResponseCache:
    return ResponseCache(
        client=fake_redis,
        config=CacheConfig(memory_ttl=15.0, persistent_ttl=3 * 60 * 60, prefix="test"),
        clock=clock,
    )


@pytest.fixture
def service(registry, cache, rate_limiter) -> QuoteService:
    return QuoteService(registry, cache, rate_limiter)


@pytest.fixture
def sample_quote() -> PriceQuote:
    return PriceQuote(
        symbol="BTC",
        asset_class=AssetClass.CRYPTO,
        price=Decimal("61234.56"),
        change_percent_24h=Decimal("-1.25"),
        day_high=Decimal("62000"),
        day_low=Decimal("60500.5"),
        previous_close=Decimal("62010"),
        volume=Decimal("15234.12"),
        provider="cryptocompare",
    )
