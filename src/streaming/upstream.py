"""
PumpPortal trade feed bridge.

Keeps exactly one WebSocket connection to PumpPortal's data API no matter
how many coins are watched, and multiplexes subscribeTokenTrade /
unsubscribeTokenTrade over it. Trade events are only used as a trigger to
re-fetch aggregate market data, so the payload is reduced to the mint.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog
import websockets
from websockets.exceptions import ConnectionClosed

from src.config.settings import settings

logger = structlog.get_logger()

SUBSCRIBE_METHOD = "subscribeTokenTrade"
UNSUBSCRIBE_METHOD = "unsubscribeTokenTrade"

# PumpPortal labels the coin under either key depending on event type
MINT_KEYS = ("mint", "token")


def extract_mint(message: str | bytes) -> Optional[str]:
    """
    Pull the mint address out of a raw feed frame.

    Returns None for anything that is not a JSON object carrying a mint.
    """
    try:
        data = json.loads(message)
    except (TypeError, ValueError) as e:
        logger.debug("Dropping non-JSON upstream frame", error=str(e))
        return None

    if not isinstance(data, dict):
        logger.debug("Dropping non-object upstream frame")
        return None

    for key in MINT_KEYS:
        mint = data.get(key)
        if isinstance(mint, str) and mint:
            return mint

    return None


class UpstreamBridge:
    """
    Single multiplexed connection to the PumpPortal trade feed.

    The subscription set survives reconnects: every mint in it is
    re-subscribed as soon as a new connection opens. Only one reconnect
    is ever pending.
    """

    def __init__(
        self,
        on_trade: Optional[Callable[[str], Awaitable[None]]] = None,
        url: Optional[str] = None,
        reconnect_delay: Optional[float] = None,
        connect_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize bridge.

        Args:
            on_trade: Coroutine called with the mint of every trade event
                (bound later by the broker if None)
            url: Feed URL (defaults to settings)
            reconnect_delay: Seconds to wait before reconnecting
            connect_factory: Replacement for websockets.connect
        """
        self.on_trade = on_trade
        self.url = url or settings.pumpportal_ws_url
        self.reconnect_delay = (
            settings.upstream_reconnect_delay if reconnect_delay is None else reconnect_delay
        )
        self._connect_factory = connect_factory or websockets.connect

        self.ws = None
        self.connected = False
        self.connecting = False
        self.subscribed_mints: set[str] = set()

        self._connection_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._event_tasks: set[asyncio.Task] = set()
        self._shutdown = False

        # Stats
        self.stats = {
            "messages_received": 0,
            "trade_events": 0,
            "errors": 0,
            "reconnects": 0,
        }
        self.last_message_at: Optional[datetime] = None

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None

    def connect(self) -> None:
        """Open the feed connection unless already connected or connecting."""
        if self._shutdown or self.connected or self.connecting:
            return

        self.connecting = True
        self._connection_task = asyncio.create_task(
            self._connect_and_run(), name="pumpportal"
        )

    async def _connect_and_run(self) -> None:
        """Connect, re-subscribe, and read until the socket closes."""
        try:
            logger.info("Connecting to PumpPortal", url=self.url)
            async with self._connect_factory(
                self.url,
                ping_interval=30,
                ping_timeout=10,
                close_timeout=5,
            ) as ws:
                self.ws = ws
                self.connecting = False
                self.connected = True
                logger.info("Connected to PumpPortal", mints=len(self.subscribed_mints))

                # Recover subscriptions from before the reconnect
                for mint in list(self.subscribed_mints):
                    await self._send(SUBSCRIBE_METHOD, mint)

                async for message in ws:
                    self._handle_message(message)

            logger.info("PumpPortal disconnected")
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            logger.warning("PumpPortal connection closed", error=str(e))
        except Exception as e:
            self.stats["errors"] += 1
            logger.error("PumpPortal error", error=str(e), error_type=type(e).__name__)
        finally:
            self.ws = None
            self.connected = False
            self.connecting = False

        self.schedule_reconnect()

    def schedule_reconnect(self) -> None:
        """Arrange one reconnect attempt after `reconnect_delay`."""
        if self._shutdown or self._reconnect_task is not None:
            return

        self.stats["reconnects"] += 1
        logger.info("Reconnecting to PumpPortal", delay=self.reconnect_delay)
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after_delay(), name="pumpportal-reconnect"
        )

    async def _reconnect_after_delay(self) -> None:
        try:
            await asyncio.sleep(self.reconnect_delay)
        finally:
            self._reconnect_task = None
        self.connect()

    def _handle_message(self, message: str | bytes) -> None:
        """Turn a feed frame into a trade notification."""
        self.stats["messages_received"] += 1
        self.last_message_at = datetime.now(timezone.utc)

        mint = extract_mint(message)
        if mint is None or self.on_trade is None:
            return

        self.stats["trade_events"] += 1

        # Each event runs independently so one slow enrichment never
        # blocks the reader
        task = asyncio.create_task(self._dispatch(mint))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    async def _dispatch(self, mint: str) -> None:
        try:
            await self.on_trade(mint)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats["errors"] += 1
            logger.error("Trade event handler failed", mint=mint[:8], error=str(e))

    async def subscribe(self, mint: str) -> None:
        """Track a mint; sent immediately if connected, else on next open."""
        self.subscribed_mints.add(mint)
        if self.connected:
            if await self._send(SUBSCRIBE_METHOD, mint):
                logger.info("Subscribed to PumpPortal trades", mint=mint[:8])

    async def unsubscribe(self, mint: str) -> None:
        """Stop tracking a mint. No-op for mints that are not subscribed."""
        if mint not in self.subscribed_mints:
            return

        self.subscribed_mints.discard(mint)
        if self.connected:
            if await self._send(UNSUBSCRIBE_METHOD, mint):
                logger.info("Unsubscribed from PumpPortal trades", mint=mint[:8])

    async def _send(self, method: str, mint: str) -> bool:
        """Send one control message upstream."""
        if self.ws is None:
            return False

        try:
            await self.ws.send(json.dumps({"method": method, "keys": [mint]}))
            return True
        except Exception as e:
            self.stats["errors"] += 1
            logger.error("Failed to send PumpPortal control message", method=method, error=str(e))
            return False

    async def shutdown(self) -> None:
        """Close the feed for good. Later connect/reconnect calls are no-ops."""
        if self._shutdown:
            return
        self._shutdown = True
        logger.info("Shutting down PumpPortal bridge")

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception as e:
                logger.debug("PumpPortal close failed", error=str(e))

        pending = [t for t in (self._connection_task, *self._event_tasks) if t and not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def get_stats(self) -> dict:
        """Get bridge statistics."""
        return {
            "connected": self.connected,
            "mints_subscribed": len(self.subscribed_mints),
            "messages_received": self.stats["messages_received"],
            "trade_events": self.stats["trade_events"],
            "errors": self.stats["errors"],
            "reconnects": self.stats["reconnects"],
            "reconnect_pending": self.reconnect_pending,
            "last_message": (
                self.last_message_at.isoformat() if self.last_message_at else None
            ),
        }
