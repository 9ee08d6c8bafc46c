"""
Downstream browser connection.

Wraps a FastAPI WebSocket with an outbound queue drained by a single writer
task. `send()` never blocks the caller, and frames for one connection go out
in the order they were queued. A slow browser only grows its own queue.
"""

import asyncio
import itertools
from typing import Optional

import structlog
from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = structlog.get_logger()

_ids = itertools.count(1)


class DownstreamConnection:
    """One browser client subscribed to live coin updates."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.id = next(_ids)
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._closed = False
        self.sent = 0

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def start(self) -> None:
        """Start the outbound writer."""
        if self._writer is None:
            self._writer = asyncio.create_task(
                self._write_loop(), name=f"ws-writer-{self.id}"
            )

    def send(self, payload: str) -> bool:
        """Queue a text frame. Returns False if the connection is not open."""
        if not self.is_open:
            return False
        self._queue.put_nowait(payload)
        return True

    async def _write_loop(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                await self.websocket.send_text(payload)
                self.sent += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Receive loop sees the disconnect and runs cleanup
                logger.warning("Downstream send failed", connection=self.id, error=str(e))
                self._closed = True
                return

    async def close(self, code: int = 1001) -> None:
        """Stop the writer and close the socket."""
        if self._closed and self._writer is None:
            return
        self._closed = True

        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None

        if (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        ):
            try:
                await self.websocket.close(code=code)
            except Exception as e:
                logger.debug("Downstream close failed", connection=self.id, error=str(e))

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def __repr__(self) -> str:
        return f"DownstreamConnection(id={self.id}, open={self.is_open})"
