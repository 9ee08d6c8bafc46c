"""
Host wiring for the live coin stream.

`init_streaming()` attaches the browser WebSocket endpoint to a FastAPI app
and starts the upstream feed. Call it from the app lifespan so an event loop
is running.
"""

from typing import Any, Callable, Optional

import structlog
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from src.config.settings import settings

from .broker import FanOutBroker, MarketDataFetcher
from .connection import DownstreamConnection
from .upstream import UpstreamBridge

logger = structlog.get_logger()


def init_streaming(
    app: FastAPI,
    fetch_market_data: MarketDataFetcher,
    path: Optional[str] = None,
    connect_factory: Optional[Callable[..., Any]] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FanOutBroker:
    """
    Create the broker, mount the browser endpoint and connect upstream.

    Args:
        app: FastAPI application to attach to
        fetch_market_data: Market data collaborator (mint -> MarketSnapshot or None)
        path: WebSocket path (defaults to settings.ws_path)
        connect_factory: Replacement for websockets.connect (upstream)
        clock: Epoch-milliseconds clock

    Returns:
        The broker, also stored as app.state.broker
    """
    bridge = UpstreamBridge(connect_factory=connect_factory)
    broker = FanOutBroker(fetch_market_data, bridge=bridge, clock=clock)
    ws_path = path or settings.ws_path

    async def stream_websocket(websocket: WebSocket):
        await run_connection(broker, websocket)

    app.add_api_websocket_route(ws_path, stream_websocket, name="coin_stream")
    app.state.broker = broker

    bridge.connect()

    logger.info("WebSocket server initialized", path=ws_path)
    return broker


async def run_connection(broker: FanOutBroker, websocket: WebSocket) -> None:
    """
    Serve one browser connection until it disconnects.

    Inbound frames:
    - {"type": "subscribe", "mints": [...]}
    - {"type": "unsubscribe", "mints": [...]}
    - {"type": "ping"}
    """
    await websocket.accept()
    conn = DownstreamConnection(websocket)

    if not broker.on_connect(conn):
        await conn.close(code=1012)
        return

    conn.start()

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue

            await broker.on_client_message(conn, raw)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("Browser WebSocket error", connection=conn.id, error=str(e))
    finally:
        await broker.on_disconnect(conn)
        await conn.close()
