"""
Quote Service

Single entry point for quotes. Combines the response cache, the rate-limited
provider registry and in-flight request de-duplication.

Usage:
    service = create_quote_service(settings)
    await service.start()

    quote = await service.get_quote("BTC", AssetClass.CRYPTO)
    quotes = await service.get_quotes(records)

    await service.close()
"""
import asyncio
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional, Union
from loguru import logger

from quotefeed.data_providers.adapters.base import AssetClass, PriceQuote
from quotefeed.data_providers.cache_manager import ResponseCache, normalize_symbol
from quotefeed.data_providers.failover import ProviderRegistry, NoProviderAvailableError
from quotefeed.data_providers.rate_limiter import RateLimiter, RateBudgetUsage
from quotefeed.utils.exceptions import QuoteUnavailableError


SAVINGS_PROVIDER = "constant"


@dataclass(frozen=True)
class AssetRecord:
    """Held asset as supplied by the portfolio side."""
    id: str
    symbol: str
    asset_class: AssetClass


@dataclass
class _InFlight:
    task: asyncio.Task
    waiters: int = 0
    # Set when the service cancels the task; new callers must not join it
    cancelled: bool = False

    def cancel(self) -> bool:
        if self.task.done():
            return False
        self.cancelled = True
        self.task.cancel()
        return True

    @property
    def joinable(self) -> bool:
        return not self.cancelled and not self.task.done()


class QuoteService:
    """
    Quote facade.

    Lookup order for get_quote (unless forced):
    1. Fresh memory entry
    2. Fresh persisted entry (memory is backfilled)
    3. The single in-flight fetch for (symbol, asset_class), started if absent

    Callers await the shared fetch through asyncio.shield, so one caller's
    cancellation leaves the others untouched. The fetch itself is cancelled
    when its last waiting caller goes away.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: ResponseCache,
        rate_limiter: RateLimiter,
        quote_currency: str = "EUR",
    ):
        self.registry = registry
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.quote_currency = quote_currency
        self._in_flight: dict[tuple[str, AssetClass], _InFlight] = {}

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Open adapter sessions and warm the memory cache."""
        await self.registry.initialize()
        await self.cache.warm_up()
        logger.info("Quote service started")

    async def close(self) -> None:
        """Cancel pending fetches and release connections."""
        tasks = [flight.task for flight in self._in_flight.values()]
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.registry.close()
        await self.cache.close()
        logger.info("Quote service closed")

    # ==================== Quotes ====================

    async def get_quote(
        self,
        symbol: str,
        asset_class: Union[AssetClass, str],
        force_refresh: bool = False,
    ) -> PriceQuote:
        """
        Get a quote for one asset.

        Args:
            symbol: Ticker, e.g. "BTC" or "AIR.PA"
            asset_class: Asset class of the symbol
            force_refresh: Skip the fresh-cache lookup

        Returns:
            PriceQuote, with is_stale=True when only an expired cached value
            could be served

        Raises:
            QuoteUnavailableError: No provider succeeded and nothing is cached
        """
        asset_class = AssetClass(asset_class)
        symbol = normalize_symbol(symbol)
        if not symbol:
            raise ValueError("Symbol must not be empty")

        if asset_class == AssetClass.SAVINGS:
            return self._savings_quote(symbol)

        if not force_refresh:
            cached = await self.cache.get_fresh(symbol)
            if cached is not None:
                return cached

        return await self._join_fetch(symbol, asset_class)

    async def get_quotes(
        self,
        records: list[AssetRecord],
        force_refresh: bool = False,
    ) -> dict[str, Optional[PriceQuote]]:
        """
        Refresh many assets concurrently.

        Returns:
            Mapping of record id to quote, None where no quote was available
        """
        results = await asyncio.gather(
            *(self._quote_or_none(record, force_refresh) for record in records)
        )
        return {record.id: quote for record, quote in zip(records, results)}

    async def _quote_or_none(self, record: AssetRecord, force_refresh: bool) -> Optional[PriceQuote]:
        try:
            return await self.get_quote(record.symbol, record.asset_class, force_refresh)
        except QuoteUnavailableError as e:
            logger.warning(f"No quote for asset {record.id}: {e.message}")
            return None

    def _savings_quote(self, symbol: str) -> PriceQuote:
        return PriceQuote(
            symbol=symbol,
            asset_class=AssetClass.SAVINGS,
            price=Decimal("1"),
            provider=SAVINGS_PROVIDER,
            currency=self.quote_currency,
        )

    # ==================== In-flight De-duplication ====================

    async def _join_fetch(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        key = (symbol, asset_class)
        flight = self._in_flight.get(key)

        if flight is None or not flight.joinable:
            task = asyncio.create_task(
                self._fetch_and_store(symbol, asset_class),
                name=f"quote-fetch:{symbol}:{asset_class.value}",
            )
            flight = _InFlight(task=task)
            self._in_flight[key] = flight
            task.add_done_callback(lambda t: self._on_fetch_done(key, t))
        else:
            logger.debug(f"Joining in-flight fetch for {symbol} ({asset_class.value})")

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and flight.cancel():
                logger.debug(f"Last caller left, cancelling fetch for {symbol}")

    def _on_fetch_done(self, key: tuple[str, AssetClass], task: asyncio.Task) -> None:
        current = self._in_flight.get(key)
        if current is not None and current.task is task:
            del self._in_flight[key]

        # Mark the outcome as retrieved when every caller already left
        if not task.cancelled():
            task.exception()

    async def _fetch_and_store(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        try:
            quote = await self.registry.fetch(symbol, asset_class)
        except NoProviderAvailableError as e:
            for failure in e.failures:
                logger.debug(f"{symbol}: {failure.provider} -> {failure.reason}: {failure.message}")

            stale = await self.cache.get(symbol)
            if stale is not None:
                logger.warning(
                    f"All providers failed for {symbol}, serving stale quote "
                    f"from {stale.timestamp.isoformat()}"
                )
                return replace(stale, is_stale=True)

            logger.error(f"Quote unavailable for {symbol} ({asset_class.value}): {e}")
            raise QuoteUnavailableError(symbol, asset_class.value) from e

        await self.cache.put(symbol, quote)
        return quote

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    # ==================== Cancellation ====================

    def cancel(self, symbol: str, asset_class: Union[AssetClass, str]) -> bool:
        """Cancel the in-flight fetch for one asset. Returns True if one was running."""
        flight = self._in_flight.get((normalize_symbol(symbol), AssetClass(asset_class)))
        if flight is None:
            return False
        return flight.cancel()

    def cancel_all(self) -> int:
        """Cancel every in-flight fetch."""
        count = 0
        for flight in list(self._in_flight.values()):
            if flight.cancel():
                count += 1
        if count:
            logger.info(f"Cancelled {count} in-flight quote fetch(es)")
        return count

    # ==================== Application Signals ====================

    def on_background(self) -> None:
        self.cancel_all()

    def on_foreground(self) -> None:
        self.cache.invalidate_memory_freshness()

    def on_memory_warning(self) -> None:
        self.cache.clear_memory()

    # ==================== Administration ====================

    async def clear_cache(self) -> None:
        """Remove every cached quote from both tiers."""
        await self.cache.clear()

    async def force_refresh_all(self) -> None:
        """Make every cached quote stale; values remain as fallback."""
        await self.cache.invalidate_timestamps()

    def get_rate_usage(self) -> dict[str, RateBudgetUsage]:
        return self.rate_limiter.get_all_usage()
