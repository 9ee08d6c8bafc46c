"""
API client modules for coin market data.

- PumpClient: pump.fun market cap, volume, holders, graduation
- BaseClient: Rate-limited HTTP client base class
"""

from src.fetchers.base import BaseClient, CircuitOpenError, RateLimiter
from src.fetchers.pump import MarketData, PumpClient

__all__ = [
    "BaseClient",
    "CircuitOpenError",
    "RateLimiter",
    "MarketData",
    "PumpClient",
]
