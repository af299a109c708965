"""
Quotefeed - Custom Exceptions
Application-level exceptions surfaced to callers of the quote service.
"""
from typing import Optional, Any, Dict


class QuoteFeedException(Exception):
    """Base exception for Quotefeed."""

    def __init__(
        self,
        message: str = "An error occurred",
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# =========================
# Quote Exceptions
# =========================

class QuoteError(QuoteFeedException):
    """Quote retrieval related errors."""
    pass


class QuoteUnavailableError(QuoteError):
    """No provider succeeded and nothing is cached for the symbol."""

    def __init__(self, symbol: str, asset_class: str):
        self.symbol = symbol
        self.asset_class = asset_class
        super().__init__(
            message=f"Quote unavailable for {symbol} ({asset_class})",
            code="QUOTE_UNAVAILABLE",
            details={"symbol": symbol, "asset_class": asset_class},
        )


# =========================
# Configuration Exceptions
# =========================

class ConfigurationError(QuoteFeedException):
    """Invalid service wiring or settings."""

    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message=message, code="CONFIGURATION_ERROR")
