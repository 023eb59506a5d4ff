# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Last-known-good DetectionResult cache.

Holds the most recently *delivered* result of one peer relationship so a
consumer can still read something while the channel is down.  Entries past
the TTL stay readable but are flagged stale; only explicit invalidation
(navigation, teardown) removes them.

Single event loop per page instance: not thread-safe.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from . import DetectionResult

logger = logging.getLogger(__name__)


class InvalidationReason(StrEnum):
    NAVIGATION = "navigation"
    TEARDOWN = "teardown"
    RESET = "reset"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A delivered result and when it was stored (monotonic seconds)."""

    result: DetectionResult
    stored_at: float
    ttl: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)

    def is_stale(self, now: float) -> bool:
        return self.age(now) > self.ttl


@dataclass(frozen=True, slots=True)
class CachedRead:
    result: DetectionResult
    age: float
    is_stale: bool


@dataclass
class CacheStats:
    hits: int = 0
    stale_hits: int = 0
    misses: int = 0
    stores: int = 0
    rejected_stores: int = 0  # older generation than the cached one
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class ResultCache:
    """Single-slot cache keeping the newest-generation delivered result."""

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entry: CacheEntry | None = None
        self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def entry(self) -> CacheEntry | None:
        return self._entry

    def store(self, result: DetectionResult) -> bool:
        """Keep *result* unless the cached one belongs to a newer generation
        of the same page instance. Returns True when stored."""
        current = self._entry
        if (
            current is not None
            and current.result.page_instance_id == result.page_instance_id
            and current.result.generation > result.generation
        ):
            self._stats.rejected_stores += 1
            logger.debug(
                "Cache kept gen=%d over older gen=%d",
                current.result.generation,
                result.generation,
            )
            return False
        self._entry = CacheEntry(result=result, stored_at=self._clock(), ttl=self._ttl)
        self._stats.stores += 1
        return True

    def lookup(self) -> CachedRead | None:
        entry = self._entry
        if entry is None:
            self._stats.misses += 1
            return None
        now = self._clock()
        stale = entry.is_stale(now)
        self._stats.hits += 1
        if stale:
            self._stats.stale_hits += 1
        return CachedRead(result=entry.result, age=entry.age(now), is_stale=stale)

    def invalidate(self, reason: InvalidationReason) -> None:
        if self._entry is not None:
            logger.debug("Cache invalidated (%s)", reason)
            self._stats.invalidations += 1
        self._entry = None
