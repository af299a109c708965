"""
Financial Modeling Prep (FMP) Adapter

Primary equity/ETF source, crypto as late fallback. One call returns the full
quote including day range and previous close.

API Documentation: https://site.financialmodelingprep.com/developer/docs
Free tier: 250 requests/day
"""
from loguru import logger

from quotefeed.data_providers.adapters.base import (
    BaseAdapter,
    ProviderConfig,
    AssetClass,
    PriceQuote,
    InvalidSymbolError,
    UnexpectedSchemaError,
    parse_price,
    parse_optional_decimal,
)


FMP_BASE_URL = "https://financialmodelingprep.com/stable"


def create_fmp_config(
    timeout_seconds: float = 15.0,
    max_connections: int = 10,
    quote_currency: str = "EUR",
) -> ProviderConfig:
    """Create configuration for FMP adapter."""
    return ProviderConfig(
        name="fmp",
        base_url=FMP_BASE_URL,
        requests_per_minute=300,
        requests_per_day=250,  # Free tier
        timeout_seconds=timeout_seconds,
        max_connections=max_connections,
        priorities={
            AssetClass.EQUITY: 10,
            AssetClass.CRYPTO: 60,
        },
        quote_currency=quote_currency,
    )


class FMPAdapter(BaseAdapter):
    """
    Financial Modeling Prep adapter.

    Equity tickers are sent as is (FMP understands exchange suffixes such as
    AIR.PA); crypto pairs are sent as BTCEUR.
    """

    def translate_symbol(self, symbol: str, asset_class: AssetClass) -> str:
        ticker = super().translate_symbol(symbol, asset_class)
        if asset_class == AssetClass.CRYPTO:
            return f"{ticker}{self.config.quote_currency}"
        return ticker

    async def fetch_quote(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        fmp_symbol = self.translate_symbol(symbol, asset_class)

        data = await self._get_json(
            f"{self.config.base_url}/quote",
            params={"symbol": fmp_symbol, "apikey": self.api_key},
            symbol=fmp_symbol,
        )

        if isinstance(data, dict) and "Error Message" in data:
            raise UnexpectedSchemaError(self.name, data["Error Message"])
        if not isinstance(data, list):
            raise UnexpectedSchemaError(self.name, "Expected a list of quotes")
        if not data:
            raise InvalidSymbolError(self.name, fmp_symbol)

        item = data[0]
        if not isinstance(item, dict):
            raise UnexpectedSchemaError(self.name, "Quote entry is not an object")

        # Field was renamed between API versions
        change = item.get("changePercentage", item.get("changesPercentage"))
        logger.debug(f"FMP quote for {fmp_symbol}: {item.get('price')}")

        return self._build_quote(
            symbol,
            asset_class,
            parse_price(self.name, item.get("price")),
            change_percent_24h=parse_optional_decimal(change),
            day_high=parse_optional_decimal(item.get("dayHigh")),
            day_low=parse_optional_decimal(item.get("dayLow")),
            previous_close=parse_optional_decimal(item.get("previousClose")),
            volume=parse_optional_decimal(item.get("volume")),
        )
