"""
In-memory market history for live coins.

Holds two views per mint, both bounded:
- Raw market-cap points (sliding window, drop-oldest)
- OHLC candles for 1m/5m/15m/1h, built incrementally from those points

The set of mints with any history is capped as well. Mints are evicted in
the order they were first recorded (FIFO), regardless of recent activity.
"""

import math
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Any, Optional

import structlog

logger = structlog.get_logger()

MAX_HISTORY_POINTS = 500
MAX_CANDLES = 500
MAX_TRACKED_ENTITIES = 200

# Timeframe name -> bucket size in seconds
TIMEFRAMES: dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "1h": 3600,
}


def is_positive_number(value: Any) -> bool:
    """True for finite numbers > 0 (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


@dataclass
class PricePoint:
    """Single market-cap sample."""

    t: float  # epoch milliseconds
    mc: float

    def to_dict(self) -> dict:
        return {"t": self.t, "mc": self.mc}


@dataclass
class Candle:
    """
    OHLC summary for one time bucket.

    The most recent candle of a series stays mutable until a sample lands
    in a later bucket.
    """

    t: int  # bucket start, epoch seconds
    o: float
    h: float
    l: float
    c: float

    def update(self, value: float) -> None:
        self.h = max(self.h, value)
        self.l = min(self.l, value)
        self.c = value

    def to_dict(self) -> dict:
        return {"t": self.t, "o": self.o, "h": self.h, "l": self.l, "c": self.c}


class TimeSeriesStore:
    """Bounded market-cap history per mint."""

    def __init__(self, max_points: int = MAX_HISTORY_POINTS):
        self.max_points = max_points
        self._points: dict[str, deque[PricePoint]] = {}

    def append(self, mint: str, point: PricePoint) -> bool:
        """
        Append a point, dropping the oldest one beyond `max_points`.

        Points without a positive value are not recorded.

        Returns:
            True if the point was stored
        """
        if not is_positive_number(point.mc):
            return False

        series = self._points.get(mint)
        if series is None:
            series = deque(maxlen=self.max_points)
            self._points[mint] = series

        series.append(point)
        return True

    def get(self, mint: str) -> list[dict]:
        """Ordered points for a mint (empty if unknown)."""
        series = self._points.get(mint)
        if not series:
            return []
        return [p.to_dict() for p in series]

    def drop(self, mint: str) -> None:
        self._points.pop(mint, None)

    def __contains__(self, mint: str) -> bool:
        return mint in self._points


class CandleAggregator:
    """
    Rolling OHLC candles across fixed timeframes per mint.

    Samples are point observations of market cap, not a trade tape, so a
    new candle opens at the previous candle's close to keep the chart
    continuous. Only the very first candle of a series opens at its own
    first value.
    """

    def __init__(
        self,
        timeframes: Optional[dict[str, int]] = None,
        max_candles: int = MAX_CANDLES,
    ):
        self.timeframes = dict(timeframes or TIMEFRAMES)
        self.max_candles = max_candles
        # mint -> timeframe -> candles
        self._series: dict[str, dict[str, deque[Candle]]] = {}

    def update(self, mint: str, value: float, timestamp: float) -> None:
        """
        Feed one sample into every timeframe.

        Args:
            mint: Coin mint address
            value: Market cap sample
            timestamp: Sample time in epoch seconds
        """
        per_tf = self._series.get(mint)
        if per_tf is None:
            per_tf = {}
            self._series[mint] = per_tf

        for tf, interval in self.timeframes.items():
            bucket_start = int(math.floor(timestamp / interval) * interval)

            series = per_tf.get(tf)
            if series is None:
                series = deque(maxlen=self.max_candles)
                per_tf[tf] = series

            last = series[-1] if series else None

            if last is not None and last.t == bucket_start:
                last.update(value)
                continue

            open_price = last.c if last is not None else value
            series.append(
                Candle(
                    t=bucket_start,
                    o=open_price,
                    h=max(open_price, value),
                    l=min(open_price, value),
                    c=value,
                )
            )

    def current(self, mint: str) -> dict[str, dict]:
        """Latest (possibly still open) candle per timeframe that has one."""
        per_tf = self._series.get(mint)
        if not per_tf:
            return {}
        return {
            tf: series[-1].to_dict()
            for tf, series in per_tf.items()
            if series
        }

    def history(self, mint: str, timeframe: str) -> list[dict]:
        """Full candle series for one timeframe (empty if none)."""
        series = self._series.get(mint, {}).get(timeframe)
        if not series:
            return []
        return [c.to_dict() for c in series]

    def drop(self, mint: str) -> None:
        self._series.pop(mint, None)

    def __contains__(self, mint: str) -> bool:
        return mint in self._series


class HistoryManager:
    """
    Owns the point store and candle aggregator for all tracked mints.

    `_tracked` keeps first-record order; the head is evicted when the cap
    is exceeded.
    """

    def __init__(
        self,
        max_points: int = MAX_HISTORY_POINTS,
        max_candles: int = MAX_CANDLES,
        max_entities: int = MAX_TRACKED_ENTITIES,
        timeframes: Optional[dict[str, int]] = None,
    ):
        self.store = TimeSeriesStore(max_points=max_points)
        self.candles = CandleAggregator(timeframes=timeframes, max_candles=max_candles)
        self.max_entities = max_entities
        self._tracked: OrderedDict[str, None] = OrderedDict()

    def record(self, mint: str, value: Any, now_ms: float) -> bool:
        """
        Record a market-cap sample taken at `now_ms`.

        Non-positive values are ignored. Returns True if recorded.
        """
        if not self.store.append(mint, PricePoint(t=now_ms, mc=value)):
            return False

        self.candles.update(mint, value, now_ms / 1000)

        if mint not in self._tracked:
            self._tracked[mint] = None
            self.enforce_cap()

        return True

    def enforce_cap(self) -> list[str]:
        """Evict earliest-tracked mints until within `max_entities`."""
        evicted = []
        while len(self._tracked) > self.max_entities:
            mint, _ = self._tracked.popitem(last=False)
            self.store.drop(mint)
            self.candles.drop(mint)
            evicted.append(mint)
            logger.info("Evicted mint history", mint=mint[:8], tracked=len(self._tracked))
        return evicted

    def tracked(self) -> list[str]:
        """Tracked mints in eviction order (oldest first)."""
        return list(self._tracked)

    def is_tracked(self, mint: str) -> bool:
        return mint in self._tracked

    def price_history(self, mint: str) -> list[dict]:
        return self.store.get(mint)

    def candle_history(self, mint: str, timeframe: str) -> list[dict]:
        return self.candles.history(mint, timeframe)

    def current_candles(self, mint: str) -> dict[str, dict]:
        return self.candles.current(mint)

    def __len__(self) -> int:
        return len(self._tracked)
