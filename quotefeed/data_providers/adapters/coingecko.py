"""
CoinGecko Adapter

Crypto prices by CoinGecko coin id. The public endpoint answers without a
key; a demo key raises the ceiling when one is configured.

API Documentation: https://docs.coingecko.com/reference/simple-price
Free tier: ~30 requests/minute
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


COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"

# Ticker -> CoinGecko coin id
COIN_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "BNB": "binancecoin",
    "SOL": "solana",
    "XRP": "ripple",
    "USDC": "usd-coin",
    "ADA": "cardano",
    "AVAX": "avalanche-2",
    "DOGE": "dogecoin",
    "DOT": "polkadot",
    "MATIC": "polygon",
    "LTC": "litecoin",
    "UNI": "uniswap",
    "LINK": "chainlink",
    "SHIB": "shiba-inu",
    "XLM": "stellar",
    "ATOM": "cosmos",
    "TRX": "tron",
    "XMR": "monero",
}


def create_coingecko_config(
    timeout_seconds: float = 15.0,
    max_connections: int = 10,
    quote_currency: str = "EUR",
    allow_anonymous: bool = True,
) -> ProviderConfig:
    """Create configuration for CoinGecko adapter."""
    return ProviderConfig(
        name="coingecko",
        base_url=COINGECKO_BASE_URL,
        requests_per_minute=30,
        requests_per_day=0,
        timeout_seconds=timeout_seconds,
        max_connections=max_connections,
        priorities={AssetClass.CRYPTO: 20},
        quote_currency=quote_currency,
        requires_api_key=not allow_anonymous,
    )


class CoinGeckoAdapter(BaseAdapter):
    """CoinGecko provider adapter (single call, no secondary request)."""

    def translate_symbol(self, symbol: str, asset_class: AssetClass) -> str:
        ticker = super().translate_symbol(symbol, asset_class)
        coin_id = COIN_IDS.get(ticker)
        if coin_id is None:
            raise InvalidSymbolError(self.name, ticker, f"No CoinGecko id known for {ticker}")
        return coin_id

    async def fetch_quote(self, symbol: str, asset_class: AssetClass) -> PriceQuote:
        coin_id = self.translate_symbol(symbol, asset_class)
        currency = self.config.quote_currency.lower()

        params = {
            "ids": coin_id,
            "vs_currencies": currency,
            "include_24hr_change": "true",
            "include_24hr_vol": "true",
        }
        headers = {}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key

        data = await self._get_json(
            f"{self.config.base_url}/simple/price",
            params=params,
            headers=headers,
            symbol=symbol,
        )

        if not isinstance(data, dict):
            raise UnexpectedSchemaError(self.name, "Expected an object keyed by coin id")

        entry = data.get(coin_id)
        if not entry:
            # Known id, but CoinGecko returned nothing for it
            logger.debug(f"CoinGecko returned no entry for {coin_id}")
            raise InvalidSymbolError(self.name, symbol)
        if not isinstance(entry, dict) or currency not in entry:
            raise UnexpectedSchemaError(self.name, f"No {currency} price for {coin_id}")

        price = parse_price(self.name, entry[currency], currency)

        return self._build_quote(
            symbol,
            asset_class,
            price,
            change_percent_24h=parse_optional_decimal(entry.get(f"{currency}_24h_change")),
            volume=parse_optional_decimal(entry.get(f"{currency}_24h_vol")),
        )
