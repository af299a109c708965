"""
CryptoCompare Adapter

Primary crypto source. Price comes from the single-symbol price endpoint;
24h change, day range and volume come from a secondary full-data call.

API Documentation: https://min-api.cryptocompare.com/documentation
Free tier: 100 requests/minute
"""
from typing import Any, Optional
from loguru import logger

from quotefeed.data_providers.adapters.base import (
    BaseAdapter,
    ProviderConfig,
    AssetClass,
    PriceQuote,
    AuthenticationError,
    InvalidSymbolError,
    RateLimitError,
    UnexpectedSchemaError,
    parse_price,
    parse_optional_decimal,
)


CRYPTOCOMPARE_BASE_URL = "https://min-api.cryptocompare.com"


def create_cryptocompare_config(
    timeout_seconds: float = 15.0,
    max_connections: int = 10,
    quote_currency: str = "EUR",
) -> ProviderConfig:
    """Create configuration for CryptoCompare adapter."""
    return ProviderConfig(
        name="cryptocompare",
        base_url=CRYPTOCOMPARE_BASE_URL,
        requests_per_minute=100,  # Free tier
        requests_per_day=0,
        timeout_seconds=timeout_seconds,
        max_connections=max_connections,
        priorities={AssetClass.CRYPTO: 10},
        quote_currency=quote_currency,
    )


class CryptoCompareAdapter(BaseAdapter):
    """
    CryptoCompare provider adapter.

    Usage:
        adapter = CryptoCompareAdapter(create_cryptocompare_config(), credentials, rate_limiter)
        await adapter.initialize()
        quote = await adapter.fetch_quote("BTC", AssetClass.CRYPTO)
    """

    async def fetch_quote(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        ticker = self.translate_symbol(symbol, asset_class)
        currency = self.config.quote_currency

        data = await self._request("/data/price", {"fsym": ticker, "tsyms": currency}, ticker)
        if not isinstance(data, dict) or currency not in data:
            raise UnexpectedSchemaError(self.name, f"No {currency} price in response for {ticker}")

        price = parse_price(self.name, data[currency], currency)

        details = await self._fetch_secondary(
            lambda: self._fetch_market_details(ticker),
            f"24h details for {ticker}",
        )

        return self._build_quote(symbol, asset_class, price, **(details or {}))

    async def _fetch_market_details(self, ticker: str) -> dict[str, Any]:
        currency = self.config.quote_currency
        data = await self._request(
            "/data/pricemultifull",
            {"fsyms": ticker, "tsyms": currency},
            ticker,
        )

        try:
            raw = data["RAW"][ticker][currency]
        except (KeyError, TypeError):
            raise UnexpectedSchemaError(self.name, f"Missing RAW.{ticker}.{currency} block")
        if not isinstance(raw, dict):
            raise UnexpectedSchemaError(self.name, f"RAW.{ticker}.{currency} is not an object")

        return {
            "change_percent_24h": parse_optional_decimal(raw.get("CHANGEPCT24HOUR")),
            "day_high": parse_optional_decimal(raw.get("HIGHDAY")),
            "day_low": parse_optional_decimal(raw.get("LOWDAY")),
            "previous_close": parse_optional_decimal(raw.get("OPENDAY")),
            "volume": parse_optional_decimal(raw.get("VOLUME24HOUR")),
        }

    async def _request(self, path: str, params: dict[str, Any], ticker: str) -> Any:
        params = dict(params)
        if self.api_key:
            params["api_key"] = self.api_key

        data = await self._get_json(f"{self.config.base_url}{path}", params=params, symbol=ticker)
        self._check_inband_error(data, ticker)
        return data

    def _check_inband_error(self, data: Any, ticker: str) -> None:
        """CryptoCompare reports most failures as HTTP 200 with Response=Error."""
        if not isinstance(data, dict) or data.get("Response") != "Error":
            return

        message: Optional[str] = data.get("Message") or "Unknown error"
        lowered = message.lower()
        logger.debug(f"CryptoCompare error for {ticker}: {message}")

        if "rate limit" in lowered:
            raise RateLimitError(self.name, retry_after=60)
        if "api key" in lowered or "auth" in lowered:
            raise AuthenticationError(self.name, message)
        if "market does not exist" in lowered or "no data" in lowered or "symbol" in lowered:
            raise InvalidSymbolError(self.name, ticker, message)
        raise UnexpectedSchemaError(self.name, message)
