"""
Live coin stream.

One PumpPortal trade subscription multiplexed to many browser connections,
with throttled market data enrichment, bounded market-cap history and
multi-timeframe OHLC candles per coin.
"""

from .throttle import ThrottleLedger, THROTTLE_MS
from .history import (
    Candle,
    CandleAggregator,
    HistoryManager,
    PricePoint,
    TimeSeriesStore,
    TIMEFRAMES,
)
from .registry import SubscriberRegistry
from .connection import DownstreamConnection
from .upstream import UpstreamBridge
from .broker import FanOutBroker
from .service import init_streaming

__all__ = [
    # Throttle
    "ThrottleLedger",
    "THROTTLE_MS",
    # History
    "Candle",
    "CandleAggregator",
    "HistoryManager",
    "PricePoint",
    "TimeSeriesStore",
    "TIMEFRAMES",
    # Registry
    "SubscriberRegistry",
    # Connections
    "DownstreamConnection",
    "UpstreamBridge",
    # Broker
    "FanOutBroker",
    "init_streaming",
]
