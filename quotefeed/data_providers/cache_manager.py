"""
Cache Manager

Two-tier quote cache: a short-lived in-process memory tier in front of a
Redis-backed persisted tier that survives restarts.

Persisted values are never expired by Redis. Freshness is decided from a
separate write timestamp per symbol, so an expired value can still be
served as a stale fallback when every provider fails.
"""
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Any, Callable

import redis.asyncio as redis
from loguru import logger

from quotefeed.data_providers.adapters.base import PriceQuote


class CacheTier(str, Enum):
    MEMORY = "memory"
    PERSISTENT = "persistent"


@dataclass
class CacheConfig:
    """Cache configuration."""
    memory_ttl: float = 15.0                  # Memory tier: 15 seconds
    persistent_ttl: float = 3 * 60 * 60       # Persisted tier: 3 hours

    # Key prefix in Redis
    prefix: str = "quotefeed"

    # Symbols loaded into memory at startup
    warm_up_count: int = 5


@dataclass
class CacheEntry:
    """A cached quote and when it was written (epoch seconds, None if unknown)."""
    symbol: str
    quote: PriceQuote
    written_at: Optional[float] = None

    def age(self, now: float) -> Optional[float]:
        if self.written_at is None:
            return None
        return now - self.written_at

    def is_fresh(self, ttl: float, now: float) -> bool:
        age = self.age(now)
        return age is not None and age < ttl


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


class MemoryTier:
    """
    In-process tier. A plain dict under a lock; values are dropped on memory
    pressure and made non-fresh when the application returns to foreground.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        # Entries written at or before this instant are never fresh
        self._fresh_after: Optional[float] = None

    def get(self, symbol: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(normalize_symbol(symbol))

    def put(self, symbol: str, quote: PriceQuote, written_at: Optional[float] = None) -> None:
        key = normalize_symbol(symbol)
        entry = CacheEntry(key, quote, written_at if written_at is not None else self._clock())
        with self._lock:
            self._entries[key] = entry

    def is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        if entry is None or entry.written_at is None:
            return False
        if self._fresh_after is not None and entry.written_at <= self._fresh_after:
            return False
        return entry.is_fresh(self.ttl, self._clock())

    def invalidate_freshness(self) -> None:
        with self._lock:
            self._fresh_after = self._clock()

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries = {}
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PersistentTier:
    """
    Redis tier. Per symbol:
        {prefix}:quote:{SYMBOL}    hash of PriceQuote.to_dict() fields
        {prefix}:written:{SYMBOL}  write time in epoch seconds

    Store errors are logged and surface as a miss; the cache never fails a
    quote request.
    """

    def __init__(
        self,
        client: Optional[redis.Redis],
        ttl: float,
        prefix: str = "quotefeed",
        clock: Callable[[], float] = time.time,
        owns_client: bool = False,
    ):
        self._client = client
        self._owns_client = owns_client
        self.ttl = ttl
        self.prefix = prefix
        self._clock = clock

    @property
    def available(self) -> bool:
        return self._client is not None

    async def close(self) -> None:
        """Close the Redis connection if this tier created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            logger.info("Redis connection closed")
        self._client = None

    def _key(self, *parts: str) -> str:
        """Build a cache key from parts."""
        return f"{self.prefix}:{':'.join(parts)}"

    def value_key(self, symbol: str) -> str:
        return self._key("quote", normalize_symbol(symbol))

    def timestamp_key(self, symbol: str) -> str:
        return self._key("written", normalize_symbol(symbol))

    async def get(self, symbol: str) -> Optional[CacheEntry]:
        if not self.available:
            return None

        try:
            data = await self._client.hgetall(self.value_key(symbol))
            if not data:
                return None
            written = await self._client.get(self.timestamp_key(symbol))
        except Exception as e:
            logger.error(f"Cache get error for {symbol}: {e}")
            return None

        try:
            quote = PriceQuote.from_dict(data)
        except (KeyError, ValueError, ArithmeticError) as e:
            logger.warning(f"Discarding unreadable cache entry for {symbol}: {e}")
            return None

        return CacheEntry(normalize_symbol(symbol), quote, _parse_timestamp(written))

    async def put(self, symbol: str, quote: PriceQuote, written_at: Optional[float] = None) -> bool:
        if not self.available:
            return False

        written_at = written_at if written_at is not None else self._clock()
        value_key = self.value_key(symbol)
        try:
            # Replace the hash so fields absent from the new quote do not linger;
            # MULTI/EXEC keeps the previous entry intact if the rewrite fails
            pipe = self._client.pipeline(transaction=True)
            pipe.delete(value_key)
            pipe.hset(value_key, mapping=quote.to_dict())
            pipe.set(self.timestamp_key(symbol), repr(written_at))
            await pipe.execute()
            return True
        except Exception as e:
            logger.error(f"Cache set error for {symbol}: {e}")
            return False

    def is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        return entry is not None and entry.is_fresh(self.ttl, self._clock())

    async def recent_symbols(self, count: int) -> list[tuple[str, float]]:
        """Most recently written symbols with their timestamps, newest first."""
        if not self.available or count <= 0:
            return []

        prefix = self._key("written", "")
        written: list[tuple[str, float]] = []
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*"):
                value = _parse_timestamp(await self._client.get(key))
                if value is not None:
                    written.append((key[len(prefix):], value))
        except Exception as e:
            logger.error(f"Cache scan error: {e}")
            return []

        written.sort(key=lambda item: item[1], reverse=True)
        return written[:count]

    async def delete_matching(self, kind: str) -> int:
        """Delete every key of one kind ("quote" or "written")."""
        if not self.available:
            return 0

        try:
            keys = [key async for key in self._client.scan_iter(match=self._key(kind, "*"))]
            if keys:
                await self._client.delete(*keys)
            return len(keys)
        except Exception as e:
            logger.error(f"Cache delete error for {kind} keys: {e}")
            return 0


def _parse_timestamp(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ResponseCache:
    """
    Two-tier quote cache.

    Features:
    - Write-through to both tiers
    - Fresh lookup with memory backfill from the persisted tier
    - Stale lookup (any age) for fallback after provider failure
    - Startup warm-up of the most recently written symbols
    - Statistics tracking
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
        owns_client: bool = False,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self.memory = MemoryTier(self.config.memory_ttl, clock=clock)
        self.persistent = PersistentTier(
            client,
            self.config.persistent_ttl,
            prefix=self.config.prefix,
            clock=clock,
            owns_client=owns_client,
        )
        self._stats = {
            "memory_hits": 0,
            "persistent_hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
        }

    # ==================== Reads ====================

    def get_memory(self, symbol: str) -> Optional[CacheEntry]:
        """Memory tier entry of any age."""
        return self.memory.get(symbol)

    async def get_persisted(self, symbol: str) -> Optional[CacheEntry]:
        """Persisted tier entry of any age."""
        return await self.persistent.get(symbol)

    async def get(self, symbol: str) -> Optional[PriceQuote]:
        """Cached quote of any age, memory first."""
        entry = self.memory.get(symbol)
        if entry is None:
            entry = await self.persistent.get(symbol)
        return entry.quote if entry else None

    async def get_fresh(self, symbol: str) -> Optional[PriceQuote]:
        """
        Fresh quote from the first tier that has one.

        A fresh persisted hit is copied into memory.
        """
        entry = self.memory.get(symbol)
        if self.memory.is_fresh(entry):
            self._stats["memory_hits"] += 1
            return entry.quote

        entry = await self.persistent.get(symbol)
        if self.persistent.is_fresh(entry):
            self._stats["persistent_hits"] += 1
            self.memory.put(symbol, entry.quote)
            return entry.quote

        self._stats["misses"] += 1
        return None

    async def is_fresh(self, symbol: str, tier: CacheTier) -> bool:
        if tier == CacheTier.MEMORY:
            return self.memory.is_fresh(self.memory.get(symbol))
        return self.persistent.is_fresh(await self.persistent.get(symbol))

    # ==================== Writes ====================

    async def put(self, symbol: str, quote: PriceQuote) -> None:
        """Write a quote through to both tiers with the same timestamp."""
        written_at = self._clock()
        self.memory.put(symbol, quote, written_at)
        await self.persistent.put(symbol, quote, written_at)
        self._stats["sets"] += 1

    async def warm_up(self, count: Optional[int] = None) -> int:
        """Load the most recently written symbols into memory."""
        count = self.config.warm_up_count if count is None else count
        loaded = 0
        for symbol, _ in await self.persistent.recent_symbols(count):
            entry = await self.persistent.get(symbol)
            if entry is not None:
                self.memory.put(symbol, entry.quote, entry.written_at)
                loaded += 1

        if loaded:
            logger.info(f"Cache warm-up loaded {loaded} quote(s) into memory")
        return loaded

    # ==================== Invalidation ====================

    def clear_memory(self) -> None:
        """Drop the memory tier (memory pressure)."""
        count = self.memory.clear()
        logger.info(f"Memory cache cleared ({count} entries)")

    def invalidate_memory_freshness(self) -> None:
        """Keep memory entries but treat them as expired."""
        self.memory.invalidate_freshness()

    async def invalidate_timestamps(self) -> None:
        """
        Force a refresh of every symbol on next access.

        Values stay in place as stale fallback; only freshness is removed.
        """
        self.memory.invalidate_freshness()
        deleted = await self.persistent.delete_matching("written")
        self._stats["deletes"] += deleted
        logger.info(f"Invalidated {deleted} cache timestamp(s)")

    async def clear(self) -> None:
        """Clear both tiers, values and timestamps."""
        self.memory.clear()
        deleted = await self.persistent.delete_matching("quote")
        deleted += await self.persistent.delete_matching("written")
        self._stats["deletes"] += deleted
        logger.info(f"Cleared quote cache ({deleted} persisted keys)")

    async def close(self) -> None:
        await self.persistent.close()

    # ==================== Cache Stats ====================

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        hits = self._stats["memory_hits"] + self._stats["persistent_hits"]
        total = hits + self._stats["misses"]
        hit_rate = hits / total if total > 0 else 0

        return {
            **self._stats,
            "memory_entries": len(self.memory),
            "total_requests": total,
            "hit_rate": round(hit_rate * 100, 2),
        }

    def reset_stats(self) -> None:
        """Reset cache statistics."""
        self._stats = {key: 0 for key in self._stats}
