"""
Quotefeed - Configuration Settings
"""
from functools import lru_cache
from typing import List
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # =========================
    # Application Settings
    # =========================
    APP_NAME: str = "Quotefeed"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # Reporting currency for every quote
    QUOTE_CURRENCY: str = "EUR"

    @field_validator("QUOTE_CURRENCY", mode="before")
    @classmethod
    def normalize_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    # =========================
    # Data Providers - API Keys
    # =========================
    # Crypto
    CRYPTOCOMPARE_API_KEY: str = ""
    COINGECKO_API_KEY: str = ""
    COINAPI_KEY: str = ""

    # Equity / ETF
    FMP_API_KEY: str = ""
    ALPHA_VANTAGE_API_KEY: str = ""
    TWELVE_DATA_API_KEY: str = ""

    # CoinGecko's public endpoint answers without a key
    COINGECKO_ALLOW_ANONYMOUS: bool = True

    # Adapters to register, in registration order
    ENABLED_PROVIDERS: List[str] = [
        "cryptocompare",
        "coingecko",
        "coinapi",
        "fmp",
        "alpha_vantage",
        "twelve_data",
    ]

    @field_validator("ENABLED_PROVIDERS", mode="before")
    @classmethod
    def parse_enabled_providers(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [name.strip() for name in v.split(",") if name.strip()]
        return v

    # =========================
    # HTTP
    # =========================
    HTTP_TIMEOUT_SECONDS: float = 15.0
    HTTP_MAX_CONNECTIONS: int = 10

    # =========================
    # Rate Limit Settings
    # =========================
    RATE_LIMIT_MAX_ATTEMPTS: int = 3
    RATE_LIMIT_MAX_WAIT_SECONDS: float = 60.0

    # =========================
    # Cache Settings
    # =========================
    MEMORY_CACHE_TTL_SECONDS: float = 15.0
    PERSISTENT_CACHE_TTL_SECONDS: float = 3 * 60 * 60
    CACHE_WARM_UP_COUNT: int = 5
    CACHE_KEY_PREFIX: str = "quotefeed"

    # =========================
    # Redis (persisted cache tier)
    # =========================
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str = ""
    REDIS_DB: int = 0
    # Direct REDIS_URL from environment (overrides individual settings)
    REDIS_URL: str = ""

    @property
    def redis_url(self) -> str:
        """Get the Redis URL."""
        if self.REDIS_URL:
            return self.REDIS_URL
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # =========================
    # Logging
    # =========================
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True

    def provider_api_keys(self) -> dict[str, str]:
        """Bundled default API key per provider name."""
        return {
            "cryptocompare": self.CRYPTOCOMPARE_API_KEY,
            "coingecko": self.COINGECKO_API_KEY,
            "coinapi": self.COINAPI_KEY,
            "fmp": self.FMP_API_KEY,
            "alpha_vantage": self.ALPHA_VANTAGE_API_KEY,
            "twelve_data": self.TWELVE_DATA_API_KEY,
        }


@lru_cache
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()
