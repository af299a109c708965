"""
Base Provider Adapter Interface

Defines the abstract interface that all quote provider adapters must implement.
Provides the shared HTTP plumbing, error taxonomy and numeric parsing so that
each adapter only deals with its own request shape and response schema.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Any, Awaitable, Callable, TypeVar, TYPE_CHECKING
import asyncio
import time

import aiohttp
from loguru import logger

if TYPE_CHECKING:
    from quotefeed.data_providers.credentials import CredentialStore
    from quotefeed.data_providers.rate_limiter import RateLimiter


T = TypeVar("T")


class AssetClass(str, Enum):
    """Categories of held instruments."""
    EQUITY = "equity"    # stocks and ETFs, ticker with optional exchange suffix
    CRYPTO = "crypto"
    SAVINGS = "savings"  # cash-like, priced at 1 and never fetched


@dataclass
class ProviderConfig:
    """Configuration for a quote provider."""
    name: str
    base_url: str = ""

    # Rate limiting (0 = no ceiling for that window)
    requests_per_minute: int = 60
    requests_per_day: int = 0

    # HTTP
    timeout_seconds: float = 15.0
    max_connections: int = 10

    # Coverage and priority per asset class (lower = tried first)
    priorities: dict[AssetClass, int] = field(default_factory=dict)

    quote_currency: str = "EUR"
    requires_api_key: bool = True

    @property
    def supported_asset_classes(self) -> list[AssetClass]:
        return list(self.priorities)


@dataclass
class PriceQuote:
    """Normalized quote returned to every caller, whatever the provider."""
    symbol: str
    asset_class: AssetClass
    price: Decimal

    change_percent_24h: Optional[Decimal] = None
    day_high: Optional[Decimal] = None
    day_low: Optional[Decimal] = None
    previous_close: Optional[Decimal] = None
    volume: Optional[Decimal] = None

    provider: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    currency: str = "EUR"

    # Set when served from an expired cache entry after every provider failed
    is_stale: bool = False

    OPTIONAL_FIELDS = ("change_percent_24h", "day_high", "day_low", "previous_close", "volume")

    def to_dict(self) -> dict[str, str]:
        """Flatten to string fields; absent optional fields are omitted."""
        data = {
            "symbol": self.symbol,
            "asset_class": self.asset_class.value,
            "price": str(self.price),
            "provider": self.provider,
            "timestamp": self.timestamp.isoformat(),
            "currency": self.currency,
        }
        for name in self.OPTIONAL_FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = str(value)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceQuote":
        """Rebuild a quote from `to_dict` output."""
        optional = {
            name: parse_optional_decimal(data.get(name))
            for name in cls.OPTIONAL_FIELDS
        }
        timestamp = data.get("timestamp")
        return cls(
            symbol=data["symbol"],
            asset_class=AssetClass(data["asset_class"]),
            price=Decimal(str(data["price"])),
            provider=data.get("provider", ""),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(timezone.utc),
            currency=data.get("currency", "EUR"),
            **optional,
        )


@dataclass
class ProviderStatus:
    """Status information for a provider."""
    name: str
    last_success: Optional[datetime] = None
    last_error: Optional[datetime] = None
    last_error_message: Optional[str] = None
    error_count: int = 0
    success_count: int = 0
    avg_latency_ms: float = 0.0


# ==================== Error Taxonomy ====================

class ProviderError(Exception):
    """Base exception for provider errors."""
    reason = "provider_error"

    def __init__(self, provider: str, message: str, recoverable: bool = True):
        self.provider = provider
        self.message = message
        self.recoverable = recoverable
        super().__init__(f"[{provider}] {message}")


class InvalidSymbolError(ProviderError):
    """Provider does not recognize the requested ticker or coin id."""
    reason = "invalid_symbol"

    def __init__(self, provider: str, symbol: str, message: Optional[str] = None):
        self.symbol = symbol
        super().__init__(provider, message or f"Unknown symbol: {symbol}", recoverable=False)


class AuthenticationError(ProviderError):
    """Missing or rejected credential."""
    reason = "unauthorized"

    def __init__(self, provider: str, message: str = "Authentication failed"):
        super().__init__(provider, message, recoverable=False)


class RateLimitError(ProviderError):
    """Local call budget exhausted, or the provider answered with HTTP 429."""
    reason = "rate_limited"

    def __init__(self, provider: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(provider, f"Rate limit exceeded. Retry after: {retry_after}s", recoverable=True)


class ProviderUnreachableError(ProviderError):
    """Network failure, timeout or server-side error."""
    reason = "unreachable"

    def __init__(self, provider: str, message: str = "Provider unreachable"):
        super().__init__(provider, message, recoverable=True)


class UnexpectedSchemaError(ProviderError):
    """Response did not have the expected shape."""
    reason = "unexpected_schema"

    def __init__(self, provider: str, message: str = "Unexpected response format"):
        super().__init__(provider, message, recoverable=False)


# ==================== Numeric Parsing ====================

def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidOperation(f"not a number: {value!r}")
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
    result = Decimal(str(value))
    if not result.is_finite():
        raise InvalidOperation(f"not finite: {value!r}")
    return result


def parse_required_decimal(provider: str, value: Any, field_name: str) -> Decimal:
    """Parse a mandatory numeric field; anything unusable is a schema error."""
    try:
        return _to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        raise UnexpectedSchemaError(provider, f"Field '{field_name}' is missing or not numeric: {value!r}")


def parse_optional_decimal(value: Any) -> Optional[Decimal]:
    """Parse an optional numeric field; unusable values become None."""
    if value is None or value == "":
        return None
    try:
        return _to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return None


def parse_price(provider: str, value: Any, field_name: str = "price") -> Decimal:
    """Parse the quote price, which must be present and non-negative."""
    price = parse_required_decimal(provider, value, field_name)
    if price < 0:
        raise UnexpectedSchemaError(provider, f"Negative price in '{field_name}': {price}")
    return price


def percent_change(current: Optional[Decimal], reference: Optional[Decimal]) -> Optional[Decimal]:
    """Percentage change from reference to current, None when undefined."""
    if current is None or reference is None or reference == 0:
        return None
    return (current - reference) / reference * Decimal("100")


class BaseAdapter(ABC):
    """
    Abstract base class for all quote provider adapters.

    Each provider adapter must implement:
    - fetch_quote(): Get a quote for a symbol of a given asset class
    - translate_symbol(): Map the generic symbol to the provider's format

    Credentials are read through the shared CredentialStore on every use, so
    runtime overrides take effect without rebuilding adapters.
    """

    def __init__(
        self,
        config: ProviderConfig,
        credentials: "CredentialStore",
        rate_limiter: Optional["RateLimiter"] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self.name = config.name
        self._credentials = credentials
        self._rate_limiter = rate_limiter
        self._status = ProviderStatus(name=config.name)
        self._session = session
        self._owns_session = session is None

    @property
    def status(self) -> ProviderStatus:
        """Get current provider status."""
        return self._status

    @property
    def api_key(self) -> str:
        return self._credentials.get_credential(self.name) or ""

    async def initialize(self) -> None:
        """Create the HTTP session with a bounded connection pool."""
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            connector = aiohttp.TCPConnector(limit=self.config.max_connections)
            self._session = aiohttp.ClientSession(timeout=timeout, connector=connector)
            self._owns_session = True
            logger.info(f"{self.name} adapter initialized")

    async def close(self) -> None:
        """Close the HTTP session if this adapter created it."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None
        logger.info(f"{self.name} adapter closed")

    # ==================== Capabilities ====================

    def supports_asset_class(self, asset_class: AssetClass) -> bool:
        """Check if this provider quotes an asset class."""
        return asset_class in self.config.priorities

    def priority_for(self, asset_class: AssetClass) -> int:
        """Priority for an asset class (lower = tried first)."""
        return self.config.priorities.get(asset_class, 1000)

    def has_valid_credentials(self) -> bool:
        """Check the locally stored credential, no network call."""
        if not self.config.requires_api_key:
            return True
        return self._credentials.has_valid_credential(self.name)

    def translate_symbol(self, symbol: str, asset_class: AssetClass) -> str:
        """
        Map a generic symbol to the provider's request format.

        Raises:
            InvalidSymbolError: If the provider cannot represent the symbol
        """
        if not self.supports_asset_class(asset_class):
            raise InvalidSymbolError(self.name, symbol, f"{asset_class.value} not supported")
        return symbol.strip().upper()

    @abstractmethod
    async def fetch_quote(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        """
        Get the current quote for a symbol.

        Args:
            symbol: Generic ticker (e.g. "BTC", "AIR.PA")
            asset_class: Asset class of the symbol

        Returns:
            PriceQuote in the reporting currency

        Raises:
            ProviderError: One of the taxonomy subclasses, never a transport error
        """
        pass

    # ==================== HTTP Helpers ====================

    async def _get_json(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        symbol: str = "",
    ) -> Any:
        """
        Issue a GET request and decode the JSON body.

        Transport failures and HTTP error statuses are converted to the
        provider error taxonomy here.
        """
        if self._session is None:
            await self.initialize()

        start_time = time.monotonic()
        try:
            async with self._session.get(url, params=params, headers=headers) as response:
                status = response.status
                if status == 200:
                    try:
                        data = await response.json(content_type=None)
                    except ValueError as e:
                        raise UnexpectedSchemaError(self.name, f"Invalid JSON body: {e}")
                else:
                    body = await response.text()
                    self._raise_for_status(status, body, symbol)
        except ProviderError as e:
            self._record_error(e)
            raise
        except asyncio.TimeoutError:
            error = ProviderUnreachableError(self.name, f"Timed out after {self.config.timeout_seconds}s")
            self._record_error(error)
            raise error
        except aiohttp.ClientError as e:
            error = ProviderUnreachableError(self.name, f"Connection error: {e}")
            self._record_error(error)
            raise error

        self._record_success((time.monotonic() - start_time) * 1000)
        return data

    def _raise_for_status(self, status: int, body: str, symbol: str = "") -> None:
        """Map a non-200 HTTP status to the error taxonomy."""
        if status in (401, 403):
            raise AuthenticationError(self.name, f"HTTP {status}")
        if status == 429:
            raise RateLimitError(self.name, retry_after=60)
        if status in (400, 404, 422):
            raise InvalidSymbolError(self.name, symbol, f"HTTP {status}: {body[:200]}")
        raise ProviderUnreachableError(self.name, f"HTTP {status}: {body[:200]}")

    async def _fetch_secondary(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
    ) -> Optional[T]:
        """
        Run an auxiliary request under its own rate-limit slot.

        A secondary call never fails the primary quote: any provider error
        (including an exhausted budget) yields None.
        """
        try:
            if self._rate_limiter is not None:
                await self._rate_limiter.acquire_slot(self.name, max_attempts=1)
            return await operation()
        except ProviderError as e:
            logger.info(f"{self.name}: {description} unavailable, optional fields omitted ({e.message})")
            return None
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            logger.warning(f"{self.name}: {description} unparseable, optional fields omitted ({e!r})")
            return None

    def _build_quote(self, symbol: str, asset_class: AssetClass, price: Decimal, **optional: Optional[Decimal]) -> PriceQuote:
        return PriceQuote(
            symbol=symbol.strip().upper(),
            asset_class=asset_class,
            price=price,
            provider=self.name,
            currency=self.config.quote_currency,
            **optional,
        )

    # ==================== Status ====================

    def _record_success(self, latency_ms: float) -> None:
        """Record a successful request."""
        self._status.success_count += 1
        self._status.last_success = datetime.now(timezone.utc)

        # Exponential moving average
        alpha = 0.1
        self._status.avg_latency_ms = (
            alpha * latency_ms + (1 - alpha) * self._status.avg_latency_ms
        )
        self._status.error_count = 0

    def _record_error(self, error: Exception) -> None:
        """Record a failed request."""
        self._status.error_count += 1
        self._status.last_error = datetime.now(timezone.utc)
        self._status.last_error_message = str(error)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"
