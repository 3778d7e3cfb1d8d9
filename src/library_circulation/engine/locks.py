"""
Per-key serialization for loan operations.

Every operation that reads a count and then writes it (available copies of
an item, active loans of a patron) holds the locks for the keys it touches
for the whole transaction. Keys are acquired in sorted order, so two
operations that need the same pair of keys can never deadlock.
"""

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


def item_key(item_id: str) -> str:
    return f"item:{item_id}"


def patron_key(patron_id: str) -> str:
    return f"patron:{patron_id}"


class LockTable:
    """
    A table of ``threading.Lock`` objects, one per key currently in use.

    Entries are reference counted: a key's lock exists while some caller
    holds it or waits for it, and is dropped when the last one leaves, so
    the table only grows with concurrency, not with the number of ids seen.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._locks: dict[str, list] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str) -> Generator[None, None, None]:
        """Hold every lock in ``keys`` for the duration of the block."""
        ordered = sorted(set(keys))
        checked_out: list[str] = []
        acquired: list[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                checked_out.append(key)
                lock.acquire()
                acquired.append(lock)
            logger.debug("Holding locks %s", ordered)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)

    def __len__(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._locks)
