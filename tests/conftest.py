"""
Shared fakes for stream tests.
"""

import asyncio
import json

import pytest

MINT_A = "A" * 32
MINT_B = "B" * 44
MINT_X = "X" * 32

# 2023-11-14T22:14:00Z, aligned to a 60s bucket
T0_MS = 1_700_000_040_000


class FakeConnection:
    """Downstream connection that records decoded frames."""

    def __init__(self, is_open: bool = True):
        self.is_open = is_open
        self.sent: list[dict] = []
        self.closed = False

    def send(self, payload: str) -> bool:
        self.sent.append(json.loads(payload))
        return True

    async def close(self, code: int = 1001) -> None:
        self.closed = True
        self.is_open = False


class FakeClock:
    """Epoch-milliseconds clock moved by hand."""

    def __init__(self, now: float = T0_MS):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeUpstream:
    """Scripted stand-in for a websockets client connection."""

    def __init__(self, frames=()):
        self.sent: list[dict] = []
        self.closed = False
        self._frames: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self._frames.put_nowait(frame)

    def push(self, frame) -> None:
        self._frames.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._frames.put_nowait(None)

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        self.closed = True
        self._frames.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._frames.get()
        if frame is None:
            raise StopAsyncIteration
        return frame

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True


class FakeConnector:
    """Replacement for websockets.connect handing out FakeUpstreams."""

    def __init__(self, *upstreams: FakeUpstream, fail: bool = False):
        self.upstreams = list(upstreams)
        self.fail = fail
        self.calls: list[str] = []
        self.opened: list[FakeUpstream] = []

    def __call__(self, url, **kwargs):
        self.calls.append(url)
        if self.fail:
            raise OSError("connection refused")
        upstream = self.upstreams.pop(0) if self.upstreams else FakeUpstream()
        self.opened.append(upstream)
        return upstream


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()
