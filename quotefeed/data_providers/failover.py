"""
Provider Registry with Failover

Holds the registered adapters and fetches a quote by trying eligible
providers one after another in priority order until one succeeds.
"""
import asyncio
from dataclasses import dataclass
from typing import Optional
from loguru import logger

from quotefeed.data_providers.adapters.base import (
    BaseAdapter,
    AssetClass,
    PriceQuote,
    ProviderError,
    AuthenticationError,
    UnexpectedSchemaError,
)
from quotefeed.data_providers.rate_limiter import RateLimiter, RateLimitConfig


@dataclass
class ProviderFailure:
    """Why one provider did not produce a quote."""
    provider: str
    reason: str
    message: str = ""


class NoProviderAvailableError(Exception):
    """Every eligible provider failed (or none was eligible)."""

    def __init__(self, symbol: str, asset_class: AssetClass, failures: Optional[list[ProviderFailure]] = None):
        self.symbol = symbol
        self.asset_class = asset_class
        self.failures = failures or []
        summary = ", ".join(f"{f.provider}={f.reason}" for f in self.failures) or "no eligible provider"
        super().__init__(f"No provider available for {symbol} ({asset_class.value}): {summary}")


@dataclass
class _Registration:
    adapter: BaseAdapter
    order: int
    # Credential that was rejected with Unauthorized, None when not blocked
    blocked_credential: Optional[str] = None
    blocked: bool = False


class ProviderRegistry:
    """
    Ordered set of provider adapters with sequential failover.

    Selection for one request:
    1. Adapter supports the asset class
    2. Adapter has a valid credential (checked locally, no call made)
    3. Adapter is not blocked after an Unauthorized answer, unless its
       credential changed since
    4. Lower priority number first, ties by registration order

    Providers are never raced: the first success short-circuits.
    """

    def __init__(self, rate_limiter: RateLimiter):
        self._rate_limiter = rate_limiter
        self._registrations: dict[str, _Registration] = {}

    def register(self, adapter: BaseAdapter) -> None:
        """Register a provider adapter."""
        if adapter.name in self._registrations:
            raise ValueError(f"Provider already registered: {adapter.name}")

        self._registrations[adapter.name] = _Registration(
            adapter=adapter,
            order=len(self._registrations),
        )
        if not self._rate_limiter.is_configured(adapter.name):
            self._rate_limiter.configure(
                adapter.name,
                RateLimitConfig(
                    requests_per_minute=adapter.config.requests_per_minute,
                    requests_per_day=adapter.config.requests_per_day,
                ),
            )
        logger.info(
            f"Registered provider: {adapter.name} "
            f"(asset classes: {[c.value for c in adapter.config.supported_asset_classes]})"
        )

    def get_provider(self, name: str) -> Optional[BaseAdapter]:
        registration = self._registrations.get(name)
        return registration.adapter if registration else None

    @property
    def adapters(self) -> list[BaseAdapter]:
        return [r.adapter for r in self._registrations.values()]

    def providers_for(self, asset_class: AssetClass) -> list[BaseAdapter]:
        """All adapters supporting an asset class, in try order, eligible or not."""
        supporting = [
            r for r in self._registrations.values()
            if r.adapter.supports_asset_class(asset_class)
        ]
        supporting.sort(key=lambda r: (r.adapter.priority_for(asset_class), r.order))
        return [r.adapter for r in supporting]

    def is_blocked(self, name: str) -> bool:
        """
        Check whether a provider is blocked after an Unauthorized answer.

        A block lifts as soon as the effective credential differs from the
        one that was rejected.
        """
        registration = self._registrations.get(name)
        if registration is None or not registration.blocked:
            return False

        if registration.adapter.api_key != registration.blocked_credential:
            registration.blocked = False
            registration.blocked_credential = None
            logger.info(f"{name}: credential changed, provider unblocked")
            return False
        return True

    async def fetch(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        """
        Fetch a quote with failover.

        Raises:
            NoProviderAvailableError: Carrying one ProviderFailure per provider
        """
        failures: list[ProviderFailure] = []

        for adapter in self.providers_for(asset_class):
            name = adapter.name

            if not adapter.has_valid_credentials():
                failures.append(ProviderFailure(name, "missing_credentials", "No valid API key"))
                continue

            if self.is_blocked(name):
                failures.append(ProviderFailure(name, "unauthorized", "Blocked until credential changes"))
                continue

            try:
                # Cheap local check, no quota used for symbols the provider cannot represent
                adapter.translate_symbol(symbol, asset_class)
                await self._rate_limiter.acquire_slot(name)
                quote = await adapter.fetch_quote(symbol, asset_class)
            except ProviderError as e:
                failures.append(ProviderFailure(name, e.reason, e.message))
                self._handle_provider_error(adapter, symbol, e)
                continue
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failures.append(ProviderFailure(name, "unexpected", str(e)))
                logger.exception(f"{name}: unexpected error fetching {symbol}: {e}")
                continue

            if failures:
                logger.info(
                    f"Quote for {symbol} served by {name} after "
                    f"{len(failures)} provider(s) failed"
                )
            return quote

        raise NoProviderAvailableError(symbol, asset_class, failures)

    def _handle_provider_error(self, adapter: BaseAdapter, symbol: str, error: ProviderError) -> None:
        if isinstance(error, UnexpectedSchemaError):
            logger.error(f"{adapter.name}: unexpected response for {symbol}, adapter needs maintenance: {error.message}")
        else:
            logger.warning(f"{adapter.name} failed for {symbol}: {error.reason} ({error.message})")

        if isinstance(error, AuthenticationError):
            registration = self._registrations[adapter.name]
            registration.blocked = True
            registration.blocked_credential = adapter.api_key
            logger.warning(f"{adapter.name}: blocked until its credential changes")

    # ==================== Lifecycle ====================

    async def initialize(self) -> None:
        """Initialize all registered adapters."""
        for adapter in self.adapters:
            await adapter.initialize()

    async def close(self) -> None:
        """Close all adapter sessions."""
        for adapter in self.adapters:
            try:
                await adapter.close()
            except Exception as e:
                logger.error(f"Error closing {adapter.name}: {e}")

    def get_status(self) -> dict[str, dict]:
        """Per-provider eligibility, priorities and rate usage."""
        status = {}
        for name, registration in self._registrations.items():
            adapter = registration.adapter
            status[name] = {
                "priorities": {c.value: p for c, p in adapter.config.priorities.items()},
                "has_credentials": adapter.has_valid_credentials(),
                "blocked": self.is_blocked(name),
                "success_count": adapter.status.success_count,
                "error_count": adapter.status.error_count,
                "last_error": adapter.status.last_error_message,
                "usage": self._rate_limiter.get_usage(name).to_dict(),
            }
        return status
