"""
In-memory segment membership cache.

Holds the member ids of evaluated segments for a TTL. Entries are never
served at or past their expiry; a stale entry is evicted by the read that
finds it.

Usage:
    cache = SegmentMembershipCache(clock=SystemClock())
    cache.put("seg-1", ["c1", "c2"])
    members = cache.get("seg-1")          # ["c1", "c2"] or None

    async with cache.lock_for("seg-1"):   # serialise recomputation
        ...

Any write to customer data must call ``invalidate_all()``: the cache does
not track which customers a segment's rules depend on. Every invalidation
bumps ``generation``; a recomputation that started before it passes the
generation it read to ``put`` and is dropped instead of stored:

    generation = cache.generation
    members = await evaluate(...)
    cache.put("seg-1", members, generation=generation)   # None if invalidated meanwhile
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Iterable, Optional

from app.core.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class TTL(IntEnum):
    """Cache TTL presets in seconds."""

    SHORT = 60
    MEDIUM = 300
    LONG = 3600


@dataclass(frozen=True)
class SegmentCacheEntry:
    segment_id: str
    customer_ids: tuple[str, ...]
    cached_at: datetime
    expires_at: datetime


class SegmentMembershipCache:
    """TTL cache of segment id -> member customer ids with an injectable clock."""

    def __init__(self, clock: Optional[Clock] = None, default_ttl: int = TTL.MEDIUM):
        self._clock = clock or SystemClock()
        self._default_ttl = timedelta(seconds=int(default_ttl))
        self._entries: dict[str, SegmentCacheEntry] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._invalidations = 0
        self._generation = 0

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, segment_id: str) -> Optional[list[str]]:
        """Cached members, or None when absent or expired."""
        entry = self._entries.get(segment_id)
        if entry is None:
            self._misses += 1
            return None
        if self._clock.now() >= entry.expires_at:
            del self._entries[segment_id]
            self._evictions += 1
            self._misses += 1
            logger.debug(f"Segment cache entry expired: {segment_id}")
            return None
        self._hits += 1
        return list(entry.customer_ids)

    def get_entry(self, segment_id: str) -> Optional[SegmentCacheEntry]:
        if self.get(segment_id) is None:
            return None
        return self._entries[segment_id]

    def peek(self, segment_id: str) -> Optional[list[str]]:
        """Like ``get`` but leaves hit/miss counters and expired entries alone."""
        entry = self._entries.get(segment_id)
        if entry is None or self._clock.now() >= entry.expires_at:
            return None
        return list(entry.customer_ids)

    def put(
        self,
        segment_id: str,
        customer_ids: Iterable[str],
        ttl: Optional[int] = None,
        generation: Optional[int] = None,
    ) -> Optional[SegmentCacheEntry]:
        if generation is not None and generation != self._generation:
            logger.debug(f"Discarding stale membership for {segment_id} (invalidated during evaluation)")
            return None
        now = self._clock.now()
        lifetime = timedelta(seconds=int(ttl)) if ttl is not None else self._default_ttl
        entry = SegmentCacheEntry(
            segment_id=segment_id,
            customer_ids=tuple(customer_ids),
            cached_at=now,
            expires_at=now + lifetime,
        )
        self._entries[segment_id] = entry
        return entry

    def invalidate(self, segment_id: str) -> bool:
        self._generation += 1
        removed = self._entries.pop(segment_id, None) is not None
        if removed:
            self._invalidations += 1
        return removed

    def invalidate_all(self) -> int:
        self._generation += 1
        count = len(self._entries)
        self._entries.clear()
        self._invalidations += count
        if count:
            logger.info(f"Segment cache cleared ({count} entries)")
        return count

    def lock_for(self, segment_id: str) -> asyncio.Lock:
        """Lock serialising writes for one segment id."""
        lock = self._locks.get(segment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[segment_id] = lock
        return lock

    def stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "invalidations": self._invalidations,
            "hit_rate": round(self._hits / total * 100, 2) if total else 0.0,
        }
