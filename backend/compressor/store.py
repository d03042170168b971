"""In-memory holding area for converted outputs awaiting download.

One store is created per application and shared by every request. Starting a
new batch clears it, so outputs of an earlier batch that were not downloaded
become unavailable. Concurrent batches from different clients race on the
same store; scoping entries by session would need a batch/session key here.
"""
import logging
import threading
from typing import Iterable

logger = logging.getLogger("compressor.store")


class ResultNotFound(KeyError):
    """Output name was never stored, was already taken, or was cleared by a newer batch."""


class ResultStore:
    """Output name -> payload bytes. Last write wins; single-item reads evict."""

    def __init__(self):
        self._entries: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
        if dropped:
            logger.info("Cleared %s undownloaded result(s)", dropped)

    def publish(self, entries: Iterable[tuple[str, bytes]]) -> None:
        """Insert all entries atomically."""
        entries = list(entries)
        with self._lock:
            for name, payload in entries:
                if name in self._entries:
                    logger.warning("Output name %s already stored; overwriting", name)
                self._entries[name] = payload

    def take(self, name: str) -> bytes:
        """Return the payload for name and remove it."""
        with self._lock:
            try:
                return self._entries.pop(name)
            except KeyError:
                raise ResultNotFound(name) from None

    def snapshot(self) -> list[tuple[str, bytes]]:
        """All held entries in insertion order. Entries stay in the store."""
        with self._lock:
            return list(self._entries.items())

    def names(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
