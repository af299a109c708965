"""
Twelve Data Adapter

Global equity coverage with European exchanges selected through the
`exchange` parameter; crypto pairs as SYM/EUR.

API Documentation: https://twelvedata.com/docs
Free tier: 800 API credits/day, 8 requests/minute
"""
from typing import Any, Optional

from quotefeed.data_providers.adapters.base import (
    BaseAdapter,
    ProviderConfig,
    AssetClass,
    PriceQuote,
    UnexpectedSchemaError,
    parse_price,
    parse_optional_decimal,
)


TWELVE_DATA_BASE_URL = "https://api.twelvedata.com"

# Ticker suffix -> Twelve Data exchange code
EXCHANGE_SUFFIXES = {
    ".PA": "Euronext",
    ".AS": "Euronext",
    ".DE": "XETR",
    ".L": "LSE",
    ".MI": "MTA",
}


def create_twelve_data_config(
    timeout_seconds: float = 15.0,
    max_connections: int = 10,
    quote_currency: str = "EUR",
) -> ProviderConfig:
    """Create configuration for Twelve Data adapter."""
    return ProviderConfig(
        name="twelve_data",
        base_url=TWELVE_DATA_BASE_URL,
        requests_per_minute=8,  # Free tier
        requests_per_day=800,  # Credits per day
        timeout_seconds=timeout_seconds,
        max_connections=max_connections,
        priorities={
            AssetClass.EQUITY: 30,
            AssetClass.CRYPTO: 40,
        },
        quote_currency=quote_currency,
    )


def split_exchange(ticker: str) -> tuple[str, Optional[str]]:
    """Split "AIR.PA" into ("AIR", "Euronext"); unknown suffixes are kept."""
    for suffix, exchange in EXCHANGE_SUFFIXES.items():
        if ticker.endswith(suffix):
            return ticker[: -len(suffix)], exchange
    return ticker, None


class TwelveDataAdapter(BaseAdapter):
    """
    Twelve Data provider adapter.

    Usage:
        adapter = TwelveDataAdapter(create_twelve_data_config(), credentials, rate_limiter)
        await adapter.initialize()
        quote = await adapter.fetch_quote("AIR.PA", AssetClass.EQUITY)
    """

    def translate_symbol(self, symbol: str, asset_class: AssetClass) -> str:
        ticker = super().translate_symbol(symbol, asset_class)
        if asset_class == AssetClass.CRYPTO:
            return f"{ticker}/{self.config.quote_currency}"
        return ticker

    async def fetch_quote(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        td_symbol = self.translate_symbol(symbol, asset_class)

        params: dict[str, Any] = {"apikey": self.api_key}
        if asset_class == AssetClass.EQUITY:
            base, exchange = split_exchange(td_symbol)
            params["symbol"] = base
            if exchange:
                params["exchange"] = exchange
        else:
            params["symbol"] = td_symbol

        data = await self._get_json(
            f"{self.config.base_url}/quote",
            params=params,
            symbol=td_symbol,
        )

        if not isinstance(data, dict):
            raise UnexpectedSchemaError(self.name, "Expected a JSON object")

        # Errors arrive as HTTP 200 with {"code": ..., "status": "error"}
        if data.get("status") == "error" or "code" in data:
            code = data.get("code")
            message = data.get("message", "")
            self._raise_for_status(code if isinstance(code, int) else 500, str(message), td_symbol)

        return self._build_quote(
            symbol,
            asset_class,
            parse_price(self.name, data.get("close"), "close"),
            change_percent_24h=parse_optional_decimal(data.get("percent_change")),
            day_high=parse_optional_decimal(data.get("high")),
            day_low=parse_optional_decimal(data.get("low")),
            previous_close=parse_optional_decimal(data.get("previous_close")),
            volume=parse_optional_decimal(data.get("volume")),
        )
