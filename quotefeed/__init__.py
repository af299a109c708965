"""
Quotefeed

Multi-provider market data quote engine with failover, rate limiting and a
two-tier response cache.
"""

__version__ = "1.0.0"
