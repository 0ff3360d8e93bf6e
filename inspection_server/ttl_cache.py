from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable


@dataclass
class CacheEntry:
    data: Any
    timestamp: float


class TTLCache:
    """Process-scoped key/value cache whose entries expire after ``ttl_seconds``.

    Writes replace the whole cached value; concurrent writers are last-write-wins.
    Expired entries are evicted on the read that finds them stale.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.timestamp < self.ttl_seconds:
            return entry.data
        self._entries.pop(key, None)
        return None

    def set(self, key: str, data: Any) -> None:
        self._entries[key] = CacheEntry(data=data, timestamp=self._clock())

    def evict(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
