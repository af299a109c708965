"""
Provider Initialization Module

Builds the quote service object graph from Settings: credential store, rate
limiter, adapters, provider registry and response cache. No module-level
singletons; every caller gets its own graph.
"""
from typing import Optional, Callable

import aiohttp
import redis.asyncio as redis
from loguru import logger

from quotefeed.config import Settings, get_settings
from quotefeed.data_providers.adapters.base import BaseAdapter, ProviderConfig
from quotefeed.data_providers.adapters.alpha_vantage import AlphaVantageAdapter, create_alpha_vantage_config
from quotefeed.data_providers.adapters.coinapi import CoinAPIAdapter, create_coinapi_config
from quotefeed.data_providers.adapters.coingecko import CoinGeckoAdapter, create_coingecko_config
from quotefeed.data_providers.adapters.cryptocompare import CryptoCompareAdapter, create_cryptocompare_config
from quotefeed.data_providers.adapters.fmp import FMPAdapter, create_fmp_config
from quotefeed.data_providers.adapters.twelve_data import TwelveDataAdapter, create_twelve_data_config
from quotefeed.data_providers.cache_manager import ResponseCache, CacheConfig
from quotefeed.data_providers.credentials import CredentialStore
from quotefeed.data_providers.failover import ProviderRegistry
from quotefeed.data_providers.quote_service import QuoteService
from quotefeed.data_providers.rate_limiter import RateLimiter
from quotefeed.utils.exceptions import ConfigurationError
from quotefeed.utils.logger import setup_logging


# Map of provider names to (adapter_class, config_factory)
PROVIDER_FACTORIES: dict[str, tuple[type[BaseAdapter], Callable[..., ProviderConfig]]] = {
    "cryptocompare": (CryptoCompareAdapter, create_cryptocompare_config),
    "coingecko": (CoinGeckoAdapter, create_coingecko_config),
    "coinapi": (CoinAPIAdapter, create_coinapi_config),
    "fmp": (FMPAdapter, create_fmp_config),
    "alpha_vantage": (AlphaVantageAdapter, create_alpha_vantage_config),
    "twelve_data": (TwelveDataAdapter, create_twelve_data_config),
}


def create_provider_config(name: str, settings: Settings) -> ProviderConfig:
    """Create the configuration for one provider from settings."""
    if name not in PROVIDER_FACTORIES:
        raise ConfigurationError(
            f"Unknown provider '{name}'. Known providers: {', '.join(PROVIDER_FACTORIES)}"
        )

    _, factory = PROVIDER_FACTORIES[name]
    kwargs = {
        "timeout_seconds": settings.HTTP_TIMEOUT_SECONDS,
        "max_connections": settings.HTTP_MAX_CONNECTIONS,
        "quote_currency": settings.QUOTE_CURRENCY,
    }
    if name == "coingecko":
        kwargs["allow_anonymous"] = settings.COINGECKO_ALLOW_ANONYMOUS
    return factory(**kwargs)


def build_adapters(
    settings: Settings,
    credentials: CredentialStore,
    rate_limiter: RateLimiter,
    session: Optional[aiohttp.ClientSession] = None,
) -> list[BaseAdapter]:
    """
    Create one adapter per enabled provider, in ENABLED_PROVIDERS order.

    Raises:
        ConfigurationError: If ENABLED_PROVIDERS names an unknown provider
    """
    adapters = []
    for name in settings.ENABLED_PROVIDERS:
        config = create_provider_config(name, settings)
        adapter_class, _ = PROVIDER_FACTORIES[name]

        adapters.append(adapter_class(config, credentials, rate_limiter=rate_limiter, session=session))

        if config.requires_api_key and not credentials.has_valid_credential(name):
            logger.warning(f"{name} enabled but no valid API key configured, it will be skipped")

    return adapters


def create_redis_client(settings: Settings) -> redis.Redis:
    """Create the async Redis client for the persisted cache tier."""
    return redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )


def create_quote_service(
    settings: Optional[Settings] = None,
    redis_client: Optional[redis.Redis] = None,
    credentials: Optional[CredentialStore] = None,
    session: Optional[aiohttp.ClientSession] = None,
    use_persistent_cache: bool = True,
    configure_logging: bool = False,
) -> QuoteService:
    """
    Build a ready-to-start QuoteService.

    Args:
        settings: Settings to use (defaults to get_settings())
        redis_client: Existing async Redis client; created from settings when
            omitted and use_persistent_cache is set
        credentials: Existing credential store, so overrides can be shared
        session: Shared aiohttp session for every adapter (mainly for tests)
        use_persistent_cache: Disable to run with the memory tier only
        configure_logging: Install the loguru sinks from settings

    Returns:
        QuoteService; call `await service.start()` before use
    """
    settings = settings or get_settings()

    if configure_logging:
        setup_logging(
            level=settings.LOG_LEVEL,
            log_dir=settings.LOG_DIR if settings.LOG_TO_FILE else None,
        )

    credentials = credentials or CredentialStore(settings.provider_api_keys())
    rate_limiter = RateLimiter(
        max_attempts=settings.RATE_LIMIT_MAX_ATTEMPTS,
        max_wait_seconds=settings.RATE_LIMIT_MAX_WAIT_SECONDS,
    )

    registry = ProviderRegistry(rate_limiter)
    for adapter in build_adapters(settings, credentials, rate_limiter, session=session):
        registry.register(adapter)

    owns_client = False
    if redis_client is None and use_persistent_cache:
        redis_client = create_redis_client(settings)
        owns_client = True

    cache = ResponseCache(
        client=redis_client if use_persistent_cache else None,
        config=CacheConfig(
            memory_ttl=settings.MEMORY_CACHE_TTL_SECONDS,
            persistent_ttl=settings.PERSISTENT_CACHE_TTL_SECONDS,
            prefix=settings.CACHE_KEY_PREFIX,
            warm_up_count=settings.CACHE_WARM_UP_COUNT,
        ),
        owns_client=owns_client,
    )

    logger.info(
        f"Quote service built with providers: {', '.join(settings.ENABLED_PROVIDERS)} "
        f"(persistent cache: {'on' if cache.persistent.available else 'off'})"
    )
    return QuoteService(registry, cache, rate_limiter, quote_currency=settings.QUOTE_CURRENCY)
