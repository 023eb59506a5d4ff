# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Stage timer for detection passes.

Created before the pass starts so it survives an exception or cancellation
mid-pass and can still say which stage was running.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

_STAGE_HINTS: dict[str, str] = {
    "snapshot": "Page capture is slow. The DOM may be huge or still loading.",
    "jurisdiction": "URL analysis should be instant; check the rule table.",
    "fields": "Field extraction is slow. The page may have thousands of inputs.",
    "classify": "Classification is slow. Check for pathological label text.",
    "sections": "Section detection is slow. The page may have very many header candidates.",
    "scoring": "Scoring should be instant.",
}


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0

    @property
    def elapsed_ms(self) -> float:
        return round((self.end_ns - self.start_ns) / 1e6, 1)


class PipelineTimer:
    """Record the start/end of each named stage of one detection pass."""

    __slots__ = ("_stages", "_current", "_start_ns", "_clock")

    def __init__(self, clock: Callable[[], int] = time.monotonic_ns) -> None:
        self._clock = clock
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = clock()

    def stage(self, name: str) -> None:
        """Close the running stage (if any) and open *name*."""
        now = self._clock()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    @contextmanager
    def track(self, name: str) -> Iterator[None]:
        """``with timer.track("classify"): ...``; the stage is closed even on error."""
        self.stage(name)
        try:
            yield
        finally:
            self.finalize()

    def finalize(self) -> None:
        if self._current is not None:
            self._current.end_ns = self._clock()
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    def elapsed_per_stage(self) -> dict[str, float]:
        """``{stage: elapsed_ms}``, including the stage still running."""
        result = {s.name: s.elapsed_ms for s in self._stages}
        if self._current is not None:
            result[self._current.name] = round((self._clock() - self._current.start_ns) / 1e6, 1)
        return result

    def total_ms(self) -> float:
        return round((self._clock() - self._start_ns) / 1e6, 1)

    def failure_report(self) -> dict:
        """Structured diagnostic for a pass that raised or was cancelled."""
        current = self.current_stage or "unknown"
        return {
            "completed_stages": [{"stage": s.name, "ms": s.elapsed_ms} for s in self._stages],
            "failed_at": current,
            "total_ms": self.total_ms(),
            "hint": hint_for_stage(current),
        }


def hint_for_stage(stage: str) -> str:
    return _STAGE_HINTS.get(stage, f"Failed during '{stage}' stage.")
