"""Injectable embedding caches keyed by model identity and exact text."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

CacheKey = tuple[str, str]


class EmbeddingCache(Protocol):
    """Minimal cache contract; a `None` from `get` means recompute."""

    def get(self, key: CacheKey) -> list[float] | None:
        """Return the cached vector or `None`."""

    def set(self, key: CacheKey, vector: list[float]) -> None:
        """Store a vector."""


class NullEmbeddingCache:
    """Cache that never hits."""

    def get(self, key: CacheKey) -> list[float] | None:
        return None

    def set(self, key: CacheKey, vector: list[float]) -> None:
        return None


class LRUEmbeddingCache:
    """Size-bounded LRU cache with an optional per-entry time-to-live."""

    def __init__(
        self,
        max_entries: int = 1024,
        ttl_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[CacheKey, tuple[float, list[float]]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: CacheKey) -> list[float] | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        stored_at, vector = entry
        if self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return list(vector)

    def set(self, key: CacheKey, vector: list[float]) -> None:
        self._entries[key] = (self._clock(), list(vector))
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)
