"""
Per-mint throttle for market data enrichment.

Upstream trade events can arrive many times per second for an active coin.
Each one is only a trigger to re-fetch aggregate data, so fetches are spaced
at least `throttle_ms` apart per mint.
"""

import structlog

logger = structlog.get_logger()

THROTTLE_MS = 5000


class ThrottleLedger:
    """Last-fetch timestamp (ms) per mint."""

    def __init__(self, throttle_ms: int = THROTTLE_MS):
        self.throttle_ms = throttle_ms
        self._last_fetch: dict[str, float] = {}

    def allow(self, mint: str, now: float) -> bool:
        """
        Check whether a fetch for `mint` may run at `now`.

        Records `now` only when the fetch is allowed.
        """
        last = self._last_fetch.get(mint)
        if last is not None and now - last < self.throttle_ms:
            return False

        self._last_fetch[mint] = now
        return True

    def forget(self, mint: str) -> None:
        """Drop the record for a mint that lost its last subscriber."""
        if self._last_fetch.pop(mint, None) is not None:
            logger.debug("Throttle record dropped", mint=mint[:8])

    def last_fetch(self, mint: str) -> float | None:
        return self._last_fetch.get(mint)

    def __contains__(self, mint: str) -> bool:
        return mint in self._last_fetch

    def __len__(self) -> int:
        return len(self._last_fetch)
