# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for regform.cache — last-known-good result with TTL staleness.

Tests: store/lookup/invalidate, generation ordering, TTL staleness,
CacheStats counters.
"""

from __future__ import annotations

import pytest

from regform.cache import CacheEntry, CacheStats, InvalidationReason, ResultCache
from tests._helpers import FakeClock, make_result


@pytest.fixture
def cache(clock):
    return ResultCache(ttl=300.0, clock=clock)


class TestStoreLookup:
    def test_empty_lookup_is_miss(self, cache):
        assert cache.lookup() is None
        assert cache.stats.misses == 1

    def test_fresh_read(self, cache, clock):
        result = make_result()
        assert cache.store(result)
        clock.advance(10)
        read = cache.lookup()
        assert read.result is result
        assert read.age == pytest.approx(10)
        assert not read.is_stale

    def test_stale_after_ttl_but_still_readable(self, cache, clock):
        cache.store(make_result())
        clock.advance(300.5)
        read = cache.lookup()
        assert read is not None
        assert read.is_stale
        assert cache.stats.stale_hits == 1

    def test_exactly_ttl_is_not_stale(self, cache, clock):
        cache.store(make_result())
        clock.advance(300)
        assert not cache.lookup().is_stale


class TestGenerations:
    def test_older_generation_rejected(self, cache):
        newer = make_result(generation=5)
        cache.store(newer)
        assert not cache.store(make_result(generation=4))
        assert cache.lookup().result is newer
        assert cache.stats.rejected_stores == 1

    def test_same_generation_replaces(self, cache):
        cache.store(make_result(generation=5, confidence=50))
        cache.store(make_result(generation=5, confidence=70))
        assert cache.lookup().result.confidence == 70

    def test_other_page_instance_replaces(self, cache):
        cache.store(make_result(generation=9, page_instance_id="old"))
        fresh = make_result(generation=1, page_instance_id="new")
        assert cache.store(fresh)
        assert cache.lookup().result is fresh


class TestInvalidate:
    def test_invalidate_clears(self, cache):
        cache.store(make_result())
        cache.invalidate(InvalidationReason.NAVIGATION)
        assert cache.entry is None
        assert cache.lookup() is None
        assert cache.stats.invalidations == 1

    def test_invalidate_empty_not_counted(self, cache):
        cache.invalidate(InvalidationReason.TEARDOWN)
        assert cache.stats.invalidations == 0


class TestStats:
    def test_hit_rate(self, cache):
        assert cache.stats.hit_rate == 0.0
        cache.lookup()
        cache.store(make_result())
        cache.lookup()
        cache.lookup()
        assert cache.stats.hit_rate == pytest.approx(2 / 3)

    def test_defaults(self):
        stats = CacheStats()
        assert (stats.hits, stats.misses, stats.stores) == (0, 0, 0)


def test_entry_age_never_negative():
    entry = CacheEntry(result=make_result(), stored_at=FakeClock().now, ttl=1.0)
    assert entry.age(0.0) == 0.0
