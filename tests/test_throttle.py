"""
Tests for the per-mint enrichment throttle.
"""

from src.streaming.throttle import ThrottleLedger, THROTTLE_MS

MINT = "M" * 32


class TestThrottleLedger:
    """Tests for allow/forget."""

    def test_first_event_allowed_and_recorded(self):
        ledger = ThrottleLedger()

        assert ledger.allow(MINT, 1_000) is True
        assert ledger.last_fetch(MINT) == 1_000

    def test_within_window_rejected_without_update(self):
        """A rejected check must not push the window forward."""
        ledger = ThrottleLedger()
        ledger.allow(MINT, 1_000)

        assert ledger.allow(MINT, 1_000 + THROTTLE_MS - 1) is False
        assert ledger.last_fetch(MINT) == 1_000

    def test_allowed_exactly_at_window(self):
        ledger = ThrottleLedger()
        ledger.allow(MINT, 1_000)

        assert ledger.allow(MINT, 1_000 + THROTTLE_MS) is True
        assert ledger.last_fetch(MINT) == 1_000 + THROTTLE_MS

    def test_at_most_one_fetch_per_window(self):
        """Rapid-fire events: one allowed per 5s window."""
        ledger = ThrottleLedger()
        allowed = [ledger.allow(MINT, t) for t in range(0, 20_000, 250)]

        assert sum(allowed) == 4

    def test_mints_are_independent(self):
        ledger = ThrottleLedger()
        other = "N" * 32

        assert ledger.allow(MINT, 0)
        assert ledger.allow(other, 10)

    def test_forget_resets(self):
        ledger = ThrottleLedger()
        ledger.allow(MINT, 1_000)
        ledger.forget(MINT)

        assert MINT not in ledger
        assert ledger.allow(MINT, 1_001) is True

    def test_forget_unknown_is_noop(self):
        ledger = ThrottleLedger()
        ledger.forget(MINT)

        assert len(ledger) == 0
