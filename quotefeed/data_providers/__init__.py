"""
Data Providers Package

This package contains the quote provider adapters and the infrastructure
around them: rate limiting, failover, caching and the quote service facade.
"""
from quotefeed.data_providers.rate_limiter import RateLimiter, RateLimitConfig, RateBudgetUsage
from quotefeed.data_providers.credentials import CredentialStore
from quotefeed.data_providers.failover import (
    ProviderRegistry,
    ProviderFailure,
    NoProviderAvailableError,
)
from quotefeed.data_providers.cache_manager import ResponseCache, CacheConfig, CacheTier
from quotefeed.data_providers.quote_service import QuoteService, AssetRecord
from quotefeed.data_providers.provider_init import create_quote_service

__all__ = [
    # Rate Limiter
    "RateLimiter",
    "RateLimitConfig",
    "RateBudgetUsage",
    # Credentials
    "CredentialStore",
    # Failover
    "ProviderRegistry",
    "ProviderFailure",
    "NoProviderAvailableError",
    # Cache
    "ResponseCache",
    "CacheConfig",
    "CacheTier",
    # Service
    "QuoteService",
    "AssetRecord",
    "create_quote_service",
]
