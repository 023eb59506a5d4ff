# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Detection orchestrator: debounce passes, publish only settled results.

State machine per page instance::

    idle → detecting → stabilizing → published
      ↑                                   │
      └── cancelled ← (navigation) ← ─ ─ ─┘   (from any state)

Every pass gets a fresh generation number when it *starts*.  A finished pass
becomes the held candidate and (re)starts the settle timer; a newer pass
replaces it.  When the timer elapses without a newer candidate the held one
is published and becomes ``last_published``.

``cancel()`` bumps an epoch counter.  Any pass or timer that started under an
older epoch, or whose generation is no longer the newest, is dropped on
arrival instead of being published.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum

from . import DetectionResult
from .config import RegFormConfig
from .detector import run_detection
from .errors import DetectionExhaustedError
from .snapshot import PageSnapshot

logger = logging.getLogger(__name__)

SnapshotSource = Callable[[], Awaitable[PageSnapshot]]
Publisher = Callable[[DetectionResult], Awaitable[None]]
ProgressCallback = Callable[[str, DetectionResult], Awaitable[None]]
ErrorCallback = Callable[[DetectionExhaustedError], Awaitable[None]]


class DetectionState(StrEnum):
    IDLE = "idle"
    DETECTING = "detecting"
    STABILIZING = "stabilizing"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


class DetectionOrchestrator:
    """Runs detection passes for one page instance.

    Usage::

        orch = DetectionOrchestrator(instance_id, capture, publish, config=cfg)
        await orch.trigger("initial")      # candidate held, settle timer running
        ...
        orch.cancel()                      # navigation: drop everything pending
        await orch.close()
    """

    def __init__(
        self,
        page_instance_id: str,
        snapshot_source: SnapshotSource,
        publish: Publisher,
        *,
        config: RegFormConfig | None = None,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.page_instance_id = page_instance_id
        self._snapshot_source = snapshot_source
        self._publish = publish
        self._config = config or RegFormConfig()
        self._on_progress = on_progress
        self._on_error = on_error
        self._clock = clock

        self._state = DetectionState.IDLE
        self._generation = 0
        self._epoch = 0
        self._held: DetectionResult | None = None
        self._last_published: DetectionResult | None = None
        self._settle_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._closed = False

    # -- Properties --

    @property
    def state(self) -> DetectionState:
        return self._state

    @property
    def generation(self) -> int:
        """Generation of the most recently started pass."""
        return self._generation

    @property
    def held(self) -> DetectionResult | None:
        return self._held

    @property
    def last_published(self) -> DetectionResult | None:
        return self._last_published

    @property
    def closed(self) -> bool:
        return self._closed

    def _set_state(self, new: DetectionState) -> None:
        if new is not self._state:
            logger.debug("Detection %s: %s -> %s", self.page_instance_id, self._state, new)
            self._state = new

    def _is_current(self, epoch: int, generation: int) -> bool:
        return not self._closed and epoch == self._epoch and generation == self._generation

    # -- Public API --

    async def trigger(self, reason: str = "manual") -> DetectionResult | None:
        """Run one pass and hold its result as the settle candidate.

        Returns the candidate, or None when the pass was superseded,
        cancelled, or exhausted its attempts (reported through ``on_error``).
        """
        if self._closed:
            return None

        detection = self._config.detection
        epoch = self._epoch
        self._generation += 1
        generation = self._generation
        self._set_state(DetectionState.DETECTING)
        logger.debug("Detection pass gen=%d started (%s)", generation, reason)

        result: DetectionResult | None = None
        last_exc: Exception | None = None
        for attempt in range(1, detection.max_detection_attempts + 1):
            try:
                snapshot = await self._snapshot_source()
                result = run_detection(
                    snapshot,
                    page_instance_id=self.page_instance_id,
                    generation=generation,
                    config=self._config,
                    clock=self._clock,
                )
                break
            except Exception as exc:  # noqa: BLE001 - retried, then reported as fatal
                last_exc = exc
                logger.warning(
                    "Detection attempt %d/%d failed (gen=%d): %s",
                    attempt,
                    detection.max_detection_attempts,
                    generation,
                    exc,
                )
            if not self._is_current(epoch, generation):
                return None
            if attempt < detection.max_detection_attempts:
                await asyncio.sleep(detection.attempt_retry_delay)
                if not self._is_current(epoch, generation):
                    return None

        if not self._is_current(epoch, generation):
            logger.debug("Dropping stale detection result gen=%d (current=%d)", generation, self._generation)
            return None

        if result is None:
            self._set_state(DetectionState.STABILIZING if self._held else DetectionState.IDLE)
            error = DetectionExhaustedError(
                f"detection failed after {detection.max_detection_attempts} attempt(s): {last_exc}",
                attempts=detection.max_detection_attempts,
            )
            error.__cause__ = last_exc
            logger.error("Detection exhausted for %s: %s", self.page_instance_id, error)
            if self._on_error is not None:
                await self._on_error(error)
            return None

        self._held = result
        self._set_state(DetectionState.STABILIZING)
        self._restart_settle_timer()
        if detection.progressive_updates and self._on_progress is not None:
            await self._on_progress("candidate", result)
        return result

    def schedule(self, reason: str = "manual") -> asyncio.Task:
        """Fire-and-forget ``trigger()``; the task is cancelled by ``close()``."""
        task = asyncio.get_running_loop().create_task(self.trigger(reason))
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def cancel(self) -> None:
        """Drop the held candidate, the settle timer and any in-flight pass."""
        self._epoch += 1
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
        self._settle_task = None
        self._held = None
        self._set_state(DetectionState.CANCELLED)
        self._set_state(DetectionState.IDLE)

    async def close(self) -> None:
        if self._closed:
            return
        self.cancel()
        self._closed = True
        pending = list(self._background)
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._background.clear()
        self._last_published = None

    # -- Internal: settle timer --

    def _restart_settle_timer(self) -> None:
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
        self._settle_task = asyncio.get_running_loop().create_task(self._settle_then_publish(self._epoch))
        self._settle_task.add_done_callback(self._settle_done)

    async def _settle_then_publish(self, epoch: int) -> None:
        await asyncio.sleep(self._config.detection.settle_delay)
        candidate = self._held
        if candidate is None or epoch != self._epoch or self._closed:
            return
        self._held = None
        self._last_published = candidate
        self._set_state(DetectionState.PUBLISHED)
        logger.info(
            "Published detection gen=%d confidence=%d fields=%d",
            candidate.generation,
            candidate.confidence,
            candidate.field_count,
        )
        await self._publish(candidate)

    def _settle_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Publishing settled result failed: %s", exc)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled detection crashed: %s", exc)
