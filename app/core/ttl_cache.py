from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    key: Hashable
    created_at: float
    ttl_seconds: float
    rows: T

    def is_fresh(self, now: float) -> bool:
        return (now - self.created_at) < self.ttl_seconds


class TTLCache(Generic[T]):
    """Read-through cache keyed by natural keys; entries are replaced wholesale on expiry."""

    def __init__(self, ttl_seconds: float, *, clock: Clock | None = None) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than 0")
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock or time.monotonic
        self._entries: dict[Hashable, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        return entry.rows

    def set(self, key: Hashable, rows: T) -> CacheEntry[T]:
        entry = CacheEntry(key=key, created_at=self._clock(), ttl_seconds=self.ttl_seconds, rows=rows)
        with self._lock:
            self._entries[key] = entry
        return entry

    def get_or_load(self, key: Hashable, loader: Callable[[], T]) -> T:
        cached = self.get(key)
        if cached is not None:
            return cached
        # Concurrent loads for one key are tolerated; the last writer wins.
        rows = loader()
        self.set(key, rows)
        return rows

    def invalidate(self, key: Hashable | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
