"""
Fan-out broker for live coin updates.

Bridges browser connection lifecycle and upstream trade events:
1. Browsers subscribe to mints; the first subscriber of a mint triggers an
   upstream subscription, the last one leaving tears it down.
2. A trade event for a watched mint (throttled per mint) re-fetches market
   data, records history and candles, and broadcasts a coinUpdate to every
   open subscriber of that mint.

All state lives on the broker instance; the host creates one per process.
"""

import json
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

import structlog

from src.config.settings import settings

from .history import HistoryManager, is_positive_number
from .registry import SubscriberRegistry
from .throttle import ThrottleLedger
from .upstream import UpstreamBridge

logger = structlog.get_logger()

MIN_MINT_LENGTH = 30


class MarketSnapshot(Protocol):
    """
    What the broker reads from a fetch result.

    src.fetchers.pump.MarketData satisfies this; plain mappings do not.
    """

    market_cap: float
    volume: float
    holders: int
    graduated: bool


# Returns a MarketSnapshot, or None when no data is available
MarketDataFetcher = Callable[[str], Awaitable[Optional[MarketSnapshot]]]


class Connection(Protocol):
    """What the broker needs from a downstream connection."""

    @property
    def is_open(self) -> bool: ...

    def send(self, payload: str) -> bool: ...

    async def close(self, code: int = 1001) -> None: ...


def now_ms() -> float:
    return time.time() * 1000


class FanOutBroker:
    """
    Multiplexes one upstream trade feed to many browser subscribers.

    Duplicate enrichment fetches are possible when two events for a mint
    pass the throttle check around the same suspension point; results are
    independent valid samples, so no in-flight guard is kept.
    """

    def __init__(
        self,
        fetch_market_data: MarketDataFetcher,
        bridge: Optional[UpstreamBridge] = None,
        ledger: Optional[ThrottleLedger] = None,
        history: Optional[HistoryManager] = None,
        clock: Optional[Callable[[], float]] = None,
        min_mint_length: Optional[int] = None,
    ):
        """
        Initialize broker.

        Args:
            fetch_market_data: Coroutine returning a MarketSnapshot for a mint, or None
            bridge: Upstream feed bridge (created against settings if None)
            ledger: Per-mint fetch throttle
            history: Shared point/candle history
            clock: Returns current time in epoch milliseconds
            min_mint_length: Minimum accepted mint length on subscribe
        """
        self.fetch_market_data = fetch_market_data
        if bridge is None:
            bridge = UpstreamBridge(on_trade=self.on_upstream_trade_event)
        elif bridge.on_trade is None:
            bridge.on_trade = self.on_upstream_trade_event
        if ledger is None:
            ledger = ThrottleLedger(settings.throttle_ms)
        if history is None:
            history = HistoryManager(
                max_points=settings.max_history_points,
                max_candles=settings.max_candles,
                max_entities=settings.max_tracked_entities,
            )
        self.bridge = bridge
        self.ledger = ledger
        self.history = history
        self.registry = SubscriberRegistry()
        self.clock = clock or now_ms
        self.min_mint_length = (
            settings.min_mint_length if min_mint_length is None else min_mint_length
        )
        self._closed = False

        self.stats = {
            "fetches": 0,
            "fetch_misses": 0,
            "fetch_errors": 0,
            "throttled": 0,
            "broadcasts": 0,
            "messages_sent": 0,
        }

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def is_valid_mint(self, mint: Any) -> bool:
        return isinstance(mint, str) and len(mint) >= self.min_mint_length

    # ------------------------------------------------------------------
    # Downstream lifecycle
    # ------------------------------------------------------------------

    def on_connect(self, conn: Connection) -> bool:
        """Register a new browser connection. Refused after shutdown."""
        if self._closed:
            return False
        self.registry.add_connection(conn)
        logger.info("Browser connected", total=len(self.registry))
        return True

    async def on_subscribe_message(self, conn: Connection, mints: Iterable[Any]) -> list[str]:
        """
        Subscribe a connection to mints.

        Malformed entries are skipped; the rest still go through.

        Returns:
            Mints accepted from this request
        """
        if self._closed:
            return []

        accepted = []
        for mint in mints:
            if not self.is_valid_mint(mint):
                logger.debug("Rejected subscribe key", key=str(mint)[:16])
                continue

            accepted.append(mint)
            if self.registry.link(conn, mint):
                await self.bridge.subscribe(mint)

        return accepted

    async def on_unsubscribe_message(self, conn: Connection, mints: Iterable[Any]) -> list[str]:
        """Unsubscribe a connection from some of its mints."""
        removed = []
        for mint in mints:
            if not isinstance(mint, str) or mint not in self.registry.subscriptions(conn):
                continue
            removed.append(mint)
            if self.registry.unlink(conn, mint):
                await self._release(mint)
        return removed

    async def on_disconnect(self, conn: Connection) -> None:
        """Drop a connection and release mints nobody watches anymore."""
        for mint in self.registry.remove_connection(conn):
            await self._release(mint)
        logger.info("Browser disconnected", total=len(self.registry))

    async def _release(self, mint: str) -> None:
        # A subscriber may have arrived while an earlier release was suspended
        if self.registry.has_subscribers(mint):
            return
        # History is kept; it ages out through the tracked-mint cap
        await self.bridge.unsubscribe(mint)
        self.ledger.forget(mint)

    async def on_client_message(self, conn: Connection, raw: str | bytes) -> None:
        """Handle one inbound browser frame."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.debug("Dropping malformed client frame", error=str(e))
            return

        if not isinstance(message, dict):
            logger.debug("Dropping non-object client frame")
            return

        msg_type = message.get("type")
        mints = message.get("mints")

        if msg_type == "subscribe" and isinstance(mints, list):
            await self.on_subscribe_message(conn, mints)

        elif msg_type == "unsubscribe" and isinstance(mints, list):
            await self.on_unsubscribe_message(conn, mints)

        elif msg_type == "ping":
            conn.send(json.dumps({
                "type": "pong",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }))

        else:
            logger.debug("Ignoring client frame", type=msg_type)

    # ------------------------------------------------------------------
    # Upstream events
    # ------------------------------------------------------------------

    async def on_upstream_trade_event(self, mint: str) -> None:
        """Re-fetch market data for a traded mint and broadcast it."""
        if not self.registry.has_subscribers(mint):
            return

        if not self.ledger.allow(mint, self.clock()):
            self.stats["throttled"] += 1
            return

        self.stats["fetches"] += 1
        try:
            market_data = await self.fetch_market_data(mint)
        except Exception as e:
            self.stats["fetch_errors"] += 1
            logger.error("Error fetching market data", mint=mint[:8], error=str(e))
            return

        if not market_data:
            self.stats["fetch_misses"] += 1
            return

        market_cap = market_data.market_cap or 0
        if is_positive_number(market_cap):
            self.history.record(mint, market_cap, self.clock())

        payload = json.dumps({
            "type": "coinUpdate",
            "mint": mint,
            "marketCap": market_cap,
            "volume24h": market_data.volume or 0,
            "holders": market_data.holders or 0,
            "graduated": bool(market_data.graduated),
            "candles": self.history.current_candles(mint),
        })

        self.broadcast(mint, payload)

    def broadcast(self, mint: str, payload: str) -> int:
        """Send a payload to every open subscriber of a mint."""
        delivered = 0
        for conn in self.registry.subscribers(mint):
            # Closed sockets are cleaned up by their own disconnect handler
            if conn.is_open and conn.send(payload):
                delivered += 1

        self.stats["broadcasts"] += 1
        self.stats["messages_sent"] += delivered
        return delivered

    # ------------------------------------------------------------------
    # Query accessors
    # ------------------------------------------------------------------

    def get_price_history(self, mint: str) -> list[dict]:
        return self.history.price_history(mint)

    def get_candle_history(self, mint: str, timeframe: str) -> list[dict]:
        return self.history.candle_history(mint, timeframe)

    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Stop the upstream feed and close every browser connection."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down fan-out broker", connections=len(self.registry))

        await self.bridge.shutdown()

        for conn in self.registry.connections():
            if not conn.is_open:
                continue
            try:
                await conn.close()
            except Exception as e:
                logger.warning("Failed to close browser connection", error=str(e))

        self.registry.clear()

    def get_stats(self) -> dict:
        """Get broker statistics."""
        return {
            "connections": len(self.registry),
            "watched_mints": len(list(self.registry.mints())),
            "tracked_mints": len(self.history),
            "throttle_records": len(self.ledger),
            **self.stats,
        }
