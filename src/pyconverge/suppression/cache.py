"""TTL cache abstraction backing the suppression layer."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol


class TtlCache(Protocol):
    """Minimal keyed store with per-entry expiry.

    Implementations may be backed by an external store shared between
    processes. Backends signal failures by raising; callers treat any
    failure as a cache miss.
    """

    def get(self, key: str) -> float | None:
        """Return the expiry timestamp of a live entry, or ``None``."""
        ...

    def set_with_ttl(self, key: str, ttl: float) -> None:
        """Insert or refresh *key* so it expires *ttl* seconds from now."""
        ...

    def prune(self) -> int:
        """Drop expired entries and return how many were removed."""
        ...


class InMemoryTtlCache:
    """Process-local TTL cache.

    Timestamps come from *clock* (``time.monotonic`` by default) so
    tests can advance time deterministically. Access is guarded by a
    lock so the cache may be shared by detection passes running on
    different threads.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> float | None:
        with self._lock:
            expires_at = self._entries.get(key)
            if expires_at is None:
                return None
            if self._clock() >= expires_at:
                return None
            return expires_at

    def set_with_ttl(self, key: str, ttl: float) -> None:
        with self._lock:
            self._entries[key] = self._clock() + ttl

    def prune(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, expires_at in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
            return len(expired)
