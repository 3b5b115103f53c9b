"""
Tests for the Segment Membership Cache.

TTL expiry is driven by a FrozenClock, never by sleeping.
"""

from datetime import datetime, timedelta

import pytest

from app.core.clock import FrozenClock
from app.services.journeys.segment_cache import TTL, SegmentMembershipCache

START = datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture
def frozen():
    return FrozenClock(START)


@pytest.fixture
def cache(frozen):
    return SegmentMembershipCache(clock=frozen, default_ttl=TTL.MEDIUM)


class TestSegmentCache:
    """Tests for get/put/expiry."""

    def test_put_then_get(self, cache):
        cache.put("seg-1", ["c1", "c2"])
        assert cache.get("seg-1") == ["c1", "c2"]

    def test_get_returns_a_copy(self, cache):
        cache.put("seg-1", ["c1"])
        cache.get("seg-1").append("c9")
        assert cache.get("seg-1") == ["c1"]

    def test_unknown_segment_is_none(self, cache):
        assert cache.get("nope") is None

    def test_expires_exactly_at_ttl(self, cache, frozen):
        cache.put("seg-1", ["c1"], ttl=60)
        frozen.advance(seconds=59)
        assert cache.get("seg-1") == ["c1"]
        frozen.advance(seconds=1)
        assert cache.get("seg-1") is None

    def test_latest_put_sets_expiry(self, cache, frozen):
        cache.put("seg-1", ["c1"], ttl=TTL.LONG)
        cache.put("seg-1", ["c2"], ttl=TTL.SHORT)
        frozen.advance(timedelta(seconds=TTL.SHORT))
        assert cache.get("seg-1") is None

    def test_default_ttl(self, cache, frozen):
        cache.put("seg-1", ["c1"])
        frozen.advance(seconds=TTL.MEDIUM - 1)
        assert cache.get("seg-1") is not None
        frozen.advance(seconds=1)
        assert cache.get("seg-1") is None

    def test_invalidate(self, cache):
        cache.put("seg-1", ["c1"])
        cache.put("seg-2", ["c2"])
        assert cache.invalidate("seg-1") is True
        assert cache.invalidate("seg-1") is False
        assert cache.get("seg-1") is None
        assert cache.invalidate_all() == 1
        assert cache.get("seg-2") is None

    def test_stats(self, cache, frozen):
        cache.put("seg-1", ["c1"], ttl=10)
        cache.get("seg-1")
        cache.get("seg-2")
        frozen.advance(seconds=10)
        cache.get("seg-1")
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 2
        assert stats["evictions"] == 1

    def test_lock_is_shared_per_segment(self, cache):
        assert cache.lock_for("seg-1") is cache.lock_for("seg-1")

    def test_put_after_invalidation_is_dropped(self, cache):
        generation = cache.generation
        cache.invalidate_all()

        assert cache.put("seg-1", ["c1"], generation=generation) is None
        assert cache.get("seg-1") is None

    def test_put_with_current_generation_is_stored(self, cache):
        cache.invalidate("seg-9")
        assert cache.put("seg-1", ["c1"], generation=cache.generation) is not None
        assert cache.get("seg-1") == ["c1"]

    def test_peek_does_not_count(self, cache, frozen):
        cache.put("seg-1", ["c1"], ttl=10)
        assert cache.peek("seg-1") == ["c1"]
        assert cache.peek("seg-2") is None
        frozen.advance(seconds=10)
        assert cache.peek("seg-1") is None

        stats = cache.stats()
        assert (stats["hits"], stats["misses"], stats["evictions"]) == (0, 0, 0)
