"""In-process memory tier in front of the durable cache.

Bounded LRU with a per-entry TTL. Entries are keyed on
(family, partition_key, configuration_id) and hold the durable CacheEntry
snapshot they were filled from, so staleness can still be judged on
calculated_at.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from scorecache.services.durable_cache import CacheEntry

MemoryKey = tuple[str, str, int]


@dataclass(frozen=True)
class _Slot:
    entry: CacheEntry
    stored_at: float


class MemoryCache:
    """LRU + TTL cache of durable cache entries.

    Single event loop use only; no locking.
    """

    def __init__(
        self,
        max_size: int = 512,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._clock = clock
        self._store: OrderedDict[MemoryKey, _Slot] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, family: str, partition_key: str, configuration_id: int) -> CacheEntry | None:
        key = (family, partition_key, configuration_id)
        slot = self._store.get(key)
        if slot is None:
            self.misses += 1
            return None
        if self._clock() - slot.stored_at > self._ttl:
            self._store.pop(key, None)
            self.misses += 1
            return None
        self._store.move_to_end(key)
        self.hits += 1
        return slot.entry

    def put(self, family: str, entry: CacheEntry) -> None:
        key = (family, entry.partition_key, entry.configuration_id)
        self._store[key] = _Slot(entry=entry, stored_at=self._clock())
        self._store.move_to_end(key)
        while len(self._store) > self._max_size:
            self._store.popitem(last=False)

    def invalidate(
        self,
        family: str | None = None,
        partition_key: str | None = None,
        configuration_id: int | None = None,
    ) -> int:
        """Drop entries matching every given filter. Returns entries dropped."""
        doomed = [
            key
            for key in self._store
            if (family is None or key[0] == family)
            and (partition_key is None or key[1] == partition_key)
            and (configuration_id is None or key[2] == configuration_id)
        ]
        for key in doomed:
            del self._store[key]
        return len(doomed)

    @property
    def size(self) -> int:
        return len(self._store)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def stats(self) -> dict[str, float | int]:
        return {
            "size": self.size,
            "max_size": self._max_size,
            "ttl_seconds": self._ttl,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hit_rate, 4),
        }
