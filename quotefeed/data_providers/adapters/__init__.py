"""
Provider Adapters Package

Contains adapters for all supported quote providers.
Each adapter implements the BaseAdapter interface for consistent data access.
"""
from quotefeed.data_providers.adapters.base import (
    BaseAdapter,
    ProviderConfig,
    AssetClass,
    PriceQuote,
    ProviderStatus,
    ProviderError,
    InvalidSymbolError,
    AuthenticationError,
    RateLimitError,
    ProviderUnreachableError,
    UnexpectedSchemaError,
)
# Crypto Providers
from quotefeed.data_providers.adapters.cryptocompare import (
    CryptoCompareAdapter,
    create_cryptocompare_config,
)
from quotefeed.data_providers.adapters.coingecko import (
    CoinGeckoAdapter,
    create_coingecko_config,
)
from quotefeed.data_providers.adapters.coinapi import (
    CoinAPIAdapter,
    create_coinapi_config,
)
# Equity Providers (with crypto fallback)
from quotefeed.data_providers.adapters.fmp import (
    FMPAdapter,
    create_fmp_config,
)
from quotefeed.data_providers.adapters.alpha_vantage import (
    AlphaVantageAdapter,
    create_alpha_vantage_config,
)
from quotefeed.data_providers.adapters.twelve_data import (
    TwelveDataAdapter,
    create_twelve_data_config,
)

__all__ = [
    # Base
    "BaseAdapter",
    "ProviderConfig",
    "AssetClass",
    "PriceQuote",
    "ProviderStatus",
    "ProviderError",
    "InvalidSymbolError",
    "AuthenticationError",
    "RateLimitError",
    "ProviderUnreachableError",
    "UnexpectedSchemaError",
    # Crypto
    "CryptoCompareAdapter",
    "create_cryptocompare_config",
    "CoinGeckoAdapter",
    "create_coingecko_config",
    "CoinAPIAdapter",
    "create_coinapi_config",
    # Equity
    "FMPAdapter",
    "create_fmp_config",
    "AlphaVantageAdapter",
    "create_alpha_vantage_config",
    "TwelveDataAdapter",
    "create_twelve_data_config",
]
