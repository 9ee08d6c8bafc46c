"""
Bidirectional subscriber index.

connection -> set of mints, and mint -> set of connections. Both sides are
only mutated together, so a mint is in a connection's set iff that
connection is in the mint's set.
"""

from typing import Hashable, Iterable


class SubscriberRegistry:
    """Tracks which downstream connections watch which mints."""

    def __init__(self):
        self._by_connection: dict[Hashable, set[str]] = {}
        self._by_mint: dict[str, set[Hashable]] = {}

    def add_connection(self, conn: Hashable) -> None:
        self._by_connection.setdefault(conn, set())

    def link(self, conn: Hashable, mint: str) -> bool:
        """
        Subscribe `conn` to `mint`.

        Returns:
            True if `mint` had no subscribers before this call
        """
        subs = self._by_mint.get(mint)
        first = not subs
        if subs is None:
            subs = set()
            self._by_mint[mint] = subs

        subs.add(conn)
        self._by_connection.setdefault(conn, set()).add(mint)
        return first

    def unlink(self, conn: Hashable, mint: str) -> bool:
        """
        Unsubscribe `conn` from `mint`.

        Returns:
            True if this removed the last subscriber of `mint`
        """
        mints = self._by_connection.get(conn)
        subs = self._by_mint.get(mint)
        if not mints or mint not in mints or subs is None:
            return False

        mints.discard(mint)
        subs.discard(conn)
        if not subs:
            del self._by_mint[mint]
            return True
        return False

    def remove_connection(self, conn: Hashable) -> list[str]:
        """
        Drop a connection and all its links.

        Returns:
            Mints left without any subscriber
        """
        orphaned = []
        for mint in list(self._by_connection.get(conn, ())):
            if self.unlink(conn, mint):
                orphaned.append(mint)
        self._by_connection.pop(conn, None)
        return orphaned

    def subscribers(self, mint: str) -> set:
        """Snapshot of connections subscribed to `mint`."""
        return set(self._by_mint.get(mint, ()))

    def subscriptions(self, conn: Hashable) -> set[str]:
        """Snapshot of mints `conn` is subscribed to."""
        return set(self._by_connection.get(conn, ()))

    def has_subscribers(self, mint: str) -> bool:
        return bool(self._by_mint.get(mint))

    def connections(self) -> list:
        return list(self._by_connection)

    def mints(self) -> Iterable[str]:
        return list(self._by_mint)

    def clear(self) -> None:
        self._by_connection.clear()
        self._by_mint.clear()

    def __len__(self) -> int:
        return len(self._by_connection)
