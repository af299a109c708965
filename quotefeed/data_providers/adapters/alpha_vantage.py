"""
Alpha Vantage Adapter

Equity quotes through GLOBAL_QUOTE with the day range taken from today's
intraday bars; crypto through CURRENCY_EXCHANGE_RATE with details from the
daily digital currency series.

API Documentation: https://www.alphavantage.co/documentation/
Free tier: 5 requests/minute, 25 requests/day
"""
from decimal import Decimal
from typing import Any, Optional
from loguru import logger

from quotefeed.data_providers.adapters.base import (
    BaseAdapter,
    ProviderConfig,
    AssetClass,
    PriceQuote,
    InvalidSymbolError,
    RateLimitError,
    UnexpectedSchemaError,
    parse_price,
    parse_optional_decimal,
    percent_change,
)


ALPHA_VANTAGE_BASE_URL = "https://www.alphavantage.co/query"

# Exchange suffixes Alpha Vantage spells differently
SUFFIX_MAP = {
    ".PA": ".PAR",
}


def create_alpha_vantage_config(
    timeout_seconds: float = 15.0,
    max_connections: int = 10,
    quote_currency: str = "EUR",
) -> ProviderConfig:
    """Create configuration for Alpha Vantage adapter."""
    return ProviderConfig(
        name="alpha_vantage",
        base_url=ALPHA_VANTAGE_BASE_URL,
        requests_per_minute=5,  # Free tier: 5/min
        requests_per_day=25,  # Free tier: 25/day
        timeout_seconds=timeout_seconds,
        max_connections=max_connections,
        priorities={
            AssetClass.EQUITY: 20,
            AssetClass.CRYPTO: 50,
        },
        quote_currency=quote_currency,
    )


class AlphaVantageAdapter(BaseAdapter):
    """Alpha Vantage provider adapter."""

    def translate_symbol(self, symbol: str, asset_class: AssetClass) -> str:
        ticker = super().translate_symbol(symbol, asset_class)
        if asset_class == AssetClass.EQUITY:
            for suffix, replacement in SUFFIX_MAP.items():
                if ticker.endswith(suffix):
                    return ticker[: -len(suffix)] + replacement
        return ticker

    async def fetch_quote(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        av_symbol = self.translate_symbol(symbol, asset_class)
        if asset_class == AssetClass.CRYPTO:
            return await self._fetch_crypto(symbol, av_symbol)
        return await self._fetch_equity(symbol, av_symbol)

    # ==================== Equity ====================

    async def _fetch_equity(self, symbol: str, av_symbol: str) -> PriceQuote:
        data = await self._query({"function": "GLOBAL_QUOTE", "symbol": av_symbol}, av_symbol)

        quote_data = data.get("Global Quote")
        if quote_data is None:
            raise UnexpectedSchemaError(self.name, "Missing 'Global Quote' block")
        if not quote_data:
            # Unknown tickers come back as an empty block
            raise InvalidSymbolError(self.name, av_symbol)

        price = parse_price(self.name, quote_data.get("05. price"), "05. price")

        day_range = await self._fetch_secondary(
            lambda: self._fetch_intraday_range(av_symbol),
            f"intraday range for {av_symbol}",
        )
        day_high, day_low = day_range or (None, None)

        return self._build_quote(
            symbol,
            AssetClass.EQUITY,
            price,
            change_percent_24h=parse_optional_decimal(quote_data.get("10. change percent")),
            previous_close=parse_optional_decimal(quote_data.get("08. previous close")),
            volume=parse_optional_decimal(quote_data.get("06. volume")),
            day_high=day_high,
            day_low=day_low,
        )

    async def _fetch_intraday_range(self, av_symbol: str) -> tuple[Optional[Decimal], Optional[Decimal]]:
        data = await self._query(
            {"function": "TIME_SERIES_INTRADAY", "symbol": av_symbol, "interval": "60min"},
            av_symbol,
        )

        series = data.get("Time Series (60min)")
        if not isinstance(series, dict) or not series:
            raise UnexpectedSchemaError(self.name, "Missing 'Time Series (60min)' block")

        # Keys are "YYYY-MM-DD HH:MM:SS"; keep the bars of the latest session
        latest_day = max(series)[:10]
        highs, lows = [], []
        for timestamp, bar in series.items():
            if not timestamp.startswith(latest_day):
                continue
            if not isinstance(bar, dict):
                raise UnexpectedSchemaError(self.name, f"Malformed intraday bar at {timestamp}")
            high = parse_optional_decimal(bar.get("2. high"))
            low = parse_optional_decimal(bar.get("3. low"))
            if high is not None:
                highs.append(high)
            if low is not None:
                lows.append(low)

        return (max(highs) if highs else None, min(lows) if lows else None)

    # ==================== Crypto ====================

    async def _fetch_crypto(self, symbol: str, ticker: str) -> PriceQuote:
        currency = self.config.quote_currency
        data = await self._query(
            {
                "function": "CURRENCY_EXCHANGE_RATE",
                "from_currency": ticker,
                "to_currency": currency,
            },
            ticker,
        )

        rate = data.get("Realtime Currency Exchange Rate")
        if not isinstance(rate, dict):
            raise UnexpectedSchemaError(self.name, "Missing 'Realtime Currency Exchange Rate' block")

        price = parse_price(self.name, rate.get("5. Exchange Rate"), "5. Exchange Rate")

        details = await self._fetch_secondary(
            lambda: self._fetch_daily_details(ticker, price),
            f"daily series for {ticker}",
        )

        return self._build_quote(symbol, AssetClass.CRYPTO, price, **(details or {}))

    async def _fetch_daily_details(self, ticker: str, price: Decimal) -> dict[str, Any]:
        currency = self.config.quote_currency
        data = await self._query(
            {"function": "DIGITAL_CURRENCY_DAILY", "symbol": ticker, "market": currency},
            ticker,
        )

        series = data.get("Time Series (Digital Currency Daily)")
        if not isinstance(series, dict) or not series:
            raise UnexpectedSchemaError(self.name, "Missing daily digital currency series")

        days = sorted(series, reverse=True)
        latest = series[days[0]]
        previous = series[days[1]] if len(days) > 1 else {}
        if not isinstance(latest, dict) or not isinstance(previous, dict):
            raise UnexpectedSchemaError(self.name, "Malformed daily digital currency entry")

        latest_close = parse_optional_decimal(latest.get(f"4a. close ({currency})"))
        previous_close = parse_optional_decimal(previous.get(f"4a. close ({currency})"))

        return {
            "change_percent_24h": percent_change(latest_close or price, previous_close),
            "day_high": parse_optional_decimal(latest.get(f"2a. high ({currency})")),
            "day_low": parse_optional_decimal(latest.get(f"3a. low ({currency})")),
            "previous_close": previous_close,
            "volume": parse_optional_decimal(latest.get("5. volume")),
        }

    # ==================== Helpers ====================

    async def _query(self, params: dict[str, Any], symbol: str) -> dict[str, Any]:
        params = {**params, "apikey": self.api_key}
        data = await self._get_json(self.config.base_url, params=params, symbol=symbol)

        if not isinstance(data, dict):
            raise UnexpectedSchemaError(self.name, "Expected a JSON object")

        # Alpha Vantage signals throttling and bad symbols with HTTP 200
        if "Note" in data or "Information" in data:
            logger.warning(f"Alpha Vantage throttled: {data.get('Note') or data.get('Information')}")
            raise RateLimitError(self.name, retry_after=60)
        if "Error Message" in data:
            raise InvalidSymbolError(self.name, symbol, data["Error Message"])

        return data
