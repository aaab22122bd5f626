"""Ephemeral key-value caches used for rerank score memoization."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol


class ScoreCache(Protocol):
    """Minimal TTL cache interface injected into the reranker."""

    def get(self, key: str) -> float | None: ...

    def set(self, key: str, value: float, ttl: int) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryTTLCache:
    """Thread-safe in-process cache with per-entry expiry.

    Concurrent writers for the same key follow last-writer-wins semantics.
    """

    def __init__(
        self,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create an empty cache.

        Args:
            max_entries: Entries kept before expired ones are purged and,
                if still full, the oldest entry is evicted.
            clock: Monotonic time source, injectable for tests.
        """
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: dict[str, tuple[float, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> float | None:
        """Return the cached value, or None when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: float, ttl: int) -> None:
        """Store ``value`` for ``ttl`` seconds."""
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict()
            self._entries[key] = (self._clock() + ttl, value)

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict(self) -> None:
        now = self._clock()
        expired = [key for key, (expires, _) in self._entries.items() if expires <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]


class NullCache:
    """Cache that never stores anything."""

    def get(self, key: str) -> float | None:  # noqa: ARG002, PLR6301
        return None

    def set(self, key: str, value: float, ttl: int) -> None:
        pass

    def delete(self, key: str) -> None:
        pass
