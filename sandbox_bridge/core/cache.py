"""ResponseCache: small TTL cache for expensive sandbox queries."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from ..types import CacheEntry

logger = logging.getLogger(__name__)


class ResponseCache:
    """Keyed payload cache with a time-to-live and a hard entry cap.

    Expiry is lazy: an entry is only checked (and deleted) when it is read.
    When a new key arrives at capacity, the entry with the oldest timestamp
    is evicted with a full scan; the cap is small so this stays cheap.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.age(self._clock()) >= self.ttl_seconds:
            del self._entries[key]
            self._misses += 1
            logger.debug("Cache entry expired: %s", key)
            return None
        self._hits += 1
        return entry.payload

    def put(self, key: str, payload: Any) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict_oldest()
        self._entries[key] = CacheEntry(key=key, payload=payload, timestamp=self._clock())

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def stats(self) -> dict:
        now = self._clock()
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "keys": {k: round(e.age(now), 1) for k, e in self._entries.items()},
        }

    def _evict_oldest(self) -> None:
        if not self._entries:
            return
        oldest = min(self._entries.values(), key=lambda e: e.timestamp)
        del self._entries[oldest.key]
        self._evictions += 1
        logger.debug("Evicted oldest cache entry: %s", oldest.key)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
