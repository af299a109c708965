"""
CoinAPI Adapter

Exchange rate for the price, daily OHLCV bar for change, range and volume.

API Documentation: https://docs.coinapi.io/
Free tier: 100 requests/day
"""
from typing import Any
from decimal import Decimal

from quotefeed.data_providers.adapters.base import (
    BaseAdapter,
    ProviderConfig,
    AssetClass,
    PriceQuote,
    InvalidSymbolError,
    UnexpectedSchemaError,
    parse_price,
    parse_optional_decimal,
    percent_change,
)


COINAPI_BASE_URL = "https://rest.coinapi.io"


def create_coinapi_config(
    timeout_seconds: float = 15.0,
    max_connections: int = 10,
    quote_currency: str = "EUR",
) -> ProviderConfig:
    """Create configuration for CoinAPI adapter."""
    return ProviderConfig(
        name="coinapi",
        base_url=COINAPI_BASE_URL,
        requests_per_minute=100,
        requests_per_day=100,  # Free tier
        timeout_seconds=timeout_seconds,
        max_connections=max_connections,
        priorities={AssetClass.CRYPTO: 30},
        quote_currency=quote_currency,
    )


class CoinAPIAdapter(BaseAdapter):
    """CoinAPI provider adapter."""

    def _headers(self) -> dict[str, str]:
        return {"X-CoinAPI-Key": self.api_key, "Accept": "application/json"}

    def _raise_for_status(self, status: int, body: str, symbol: str = "") -> None:
        # 550 = no data for the requested asset pair
        if status == 550:
            raise InvalidSymbolError(self.name, symbol, f"HTTP 550: {body[:200]}")
        super()._raise_for_status(status, body, symbol)

    async def fetch_quote(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        ticker = self.translate_symbol(symbol, asset_class)
        currency = self.config.quote_currency

        data = await self._get_json(
            f"{self.config.base_url}/v1/exchangerate/{ticker}/{currency}",
            headers=self._headers(),
            symbol=ticker,
        )
        if not isinstance(data, dict) or "rate" not in data:
            raise UnexpectedSchemaError(self.name, f"No rate in exchange rate response for {ticker}")

        price = parse_price(self.name, data["rate"], "rate")

        details = await self._fetch_secondary(
            lambda: self._fetch_daily_bar(ticker, price),
            f"daily OHLCV for {ticker}",
        )

        return self._build_quote(symbol, asset_class, price, **(details or {}))

    async def _fetch_daily_bar(self, ticker: str, price: Decimal) -> dict[str, Any]:
        currency = self.config.quote_currency
        data = await self._get_json(
            f"{self.config.base_url}/v1/ohlcv/{ticker}/{currency}/latest",
            params={"period_id": "1DAY", "limit": 1},
            headers=self._headers(),
            symbol=ticker,
        )

        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise UnexpectedSchemaError(self.name, f"Empty OHLCV response for {ticker}")

        bar = data[0]
        day_open = parse_optional_decimal(bar.get("price_open"))

        return {
            "change_percent_24h": percent_change(price, day_open),
            "day_high": parse_optional_decimal(bar.get("price_high")),
            "day_low": parse_optional_decimal(bar.get("price_low")),
            "previous_close": day_open,
            "volume": parse_optional_decimal(bar.get("volume_traded")),
        }
