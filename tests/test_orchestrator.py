# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for DetectionOrchestrator — settle window, supersession, cancellation.

Configs use a 50 ms settle delay so every scenario runs in real time.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from regform.errors import DetectionExhaustedError, SnapshotError
from regform.orchestrator import DetectionOrchestrator, DetectionState
from regform.snapshot import parse_html
from tests._helpers import DC_FORM_HTML, DC_FORM_URL, wait_until


def _source(snapshot):
    return AsyncMock(return_value=snapshot)


def _orchestrator(source, config, **kwargs) -> tuple[DetectionOrchestrator, AsyncMock]:
    publish = AsyncMock()
    return DetectionOrchestrator("tab-1", source, publish, config=config, **kwargs), publish


class TestSettle:
    async def test_publishes_after_settle_delay(self, dc_snapshot, config):
        orch, publish = _orchestrator(_source(dc_snapshot), config)
        candidate = await orch.trigger("initial")

        assert candidate is not None
        assert orch.state is DetectionState.STABILIZING
        assert orch.held is candidate
        publish.assert_not_awaited()

        await wait_until(lambda: publish.await_count == 1)
        assert publish.await_args.args[0] is candidate
        assert orch.state is DetectionState.PUBLISHED
        assert orch.last_published is candidate
        assert orch.held is None
        await orch.close()

    async def test_newer_pass_within_window_supersedes(self, dc_snapshot, config):
        orch, publish = _orchestrator(_source(dc_snapshot), config)
        first = await orch.trigger("initial")
        second = await orch.trigger("dom_change")

        await asyncio.sleep(config.detection.settle_delay * 3)
        publish.assert_awaited_once()
        published = publish.await_args.args[0]
        assert published is second
        assert published.generation == first.generation + 1
        await orch.close()

    async def test_generations_strictly_increase(self, dc_snapshot, config):
        orch, publish = _orchestrator(_source(dc_snapshot), config)
        for _ in range(3):
            await orch.trigger()
            await wait_until(lambda: orch.state is DetectionState.PUBLISHED)
        gens = [call.args[0].generation for call in publish.await_args_list]
        assert gens == [1, 2, 3]
        await orch.close()

    async def test_progress_callback_gets_candidate(self, dc_snapshot, config):
        progress = AsyncMock()
        orch, _ = _orchestrator(_source(dc_snapshot), config, on_progress=progress)
        candidate = await orch.trigger()
        progress.assert_awaited_once_with("candidate", candidate)
        await orch.close()


class TestStaleResults:
    async def test_slow_older_pass_is_dropped(self, dc_snapshot, config):
        release = asyncio.Event()
        calls = 0

        async def source():
            nonlocal calls
            calls += 1
            if calls == 1:
                await release.wait()
            return dc_snapshot

        orch, publish = _orchestrator(source, config)
        slow = asyncio.create_task(orch.trigger("first"))
        await asyncio.sleep(0)
        fast = await orch.trigger("second")
        release.set()
        assert await slow is None

        await wait_until(lambda: publish.await_count == 1)
        assert publish.await_args.args[0] is fast
        await orch.close()

    async def test_cancel_drops_held_candidate(self, dc_snapshot, config):
        orch, publish = _orchestrator(_source(dc_snapshot), config)
        await orch.trigger()
        orch.cancel()

        assert orch.held is None
        assert orch.state is DetectionState.IDLE
        await asyncio.sleep(config.detection.settle_delay * 3)
        publish.assert_not_awaited()
        await orch.close()

    async def test_cancel_aborts_in_flight_pass(self, dc_snapshot, config):
        release = asyncio.Event()

        async def source():
            await release.wait()
            return dc_snapshot

        orch, publish = _orchestrator(source, config)
        task = orch.schedule("initial")
        await asyncio.sleep(0)
        orch.cancel()
        release.set()

        assert await task is None
        await asyncio.sleep(config.detection.settle_delay * 3)
        publish.assert_not_awaited()
        await orch.close()


class TestFailures:
    async def test_transient_snapshot_failure_retried(self, dc_snapshot, config):
        source = AsyncMock(side_effect=[SnapshotError("page busy"), dc_snapshot])
        orch, _ = _orchestrator(source, config)
        assert await orch.trigger() is not None
        assert source.await_count == 2
        await orch.close()

    async def test_exhaustion_reported_once(self, config):
        source = AsyncMock(side_effect=SnapshotError("detached"))
        on_error = AsyncMock()
        orch, publish = _orchestrator(source, config, on_error=on_error)

        assert await orch.trigger() is None
        assert source.await_count == config.detection.max_detection_attempts
        on_error.assert_awaited_once()
        error = on_error.await_args.args[0]
        assert isinstance(error, DetectionExhaustedError)
        assert error.attempts == config.detection.max_detection_attempts
        assert isinstance(error.__cause__, SnapshotError)
        assert orch.state is DetectionState.IDLE
        publish.assert_not_awaited()
        await orch.close()


class TestLifecycle:
    async def test_close_cancels_background_work(self, config):
        release = asyncio.Event()

        async def source():
            await release.wait()
            return parse_html(DC_FORM_HTML, url=DC_FORM_URL)

        orch, publish = _orchestrator(source, config)
        task = orch.schedule()
        await asyncio.sleep(0)
        await orch.close()

        assert task.cancelled()
        assert orch.closed
        assert await orch.trigger() is None
        publish.assert_not_awaited()

    async def test_close_is_idempotent(self, dc_snapshot, config):
        orch, _ = _orchestrator(_source(dc_snapshot), config)
        await orch.close()
        await orch.close()
        assert orch.closed
