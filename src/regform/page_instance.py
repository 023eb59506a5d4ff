# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageInstance - per-tab detection state, owned by an explicit registry.

A ``PageInstance`` ties together the orchestrator, the channel to the UI
consumer and the error reporter of one browser tab (the *peer*).  Its
``instance_id`` changes on every navigation; the generation counter of its
orchestrator never resets, so generations stay strictly increasing for the
whole life of the tab.

``PageInstanceRegistry`` maps peer id → ``PageInstance`` and guarantees that
each instance is torn down exactly once (on ``remove``, replacement or
``shutdown``).  There is no module-level state.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from . import DetectionResult
from .cache import InvalidationReason
from .channel import ConnectionState, ResilientChannel, Transport
from .config import RegFormConfig
from .error_reporter import ErrorContext, ErrorReporter
from .errors import DetectionExhaustedError, PageInstanceNotFoundError, TransportError
from .logging_config import bound_page_instance
from .messages import (
    Direction,
    Message,
    MessageKind,
    MessageRouter,
    detection_complete,
    form_detected,
    navigation_intent,
    progressive_update,
)
from .orchestrator import DetectionOrchestrator, SnapshotSource
from .serializer import to_dict

logger = logging.getLogger(__name__)


def new_instance_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass(frozen=True, slots=True)
class ResultRead:
    """Answer to ``getDetectionResult``."""

    result: DetectionResult | None
    stale: bool
    source: str  # "live" | "cache" | "none"

    def to_payload(self) -> dict[str, Any]:
        return {
            "result": to_dict(self.result) if self.result is not None else None,
            "stale": self.stale,
            "source": self.source,
        }


class PageInstance:
    """Detection + messaging state of one browser tab."""

    def __init__(
        self,
        peer_id: str,
        snapshot_source: SnapshotSource,
        transport: Transport,
        *,
        config: RegFormConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.peer_id = peer_id
        self._config = config or RegFormConfig()
        self._instance_id = new_instance_id()
        self.channel = ResilientChannel(
            transport,
            self._config.channel,
            clock=clock,
            on_fatal=self._on_channel_fatal,
        )
        self.reporter = ErrorReporter(
            self._instance_id,
            self._send_report,
            max_fatal=self._config.channel.max_fatal_notifications,
        )
        self.orchestrator = DetectionOrchestrator(
            self._instance_id,
            snapshot_source,
            self._publish,
            config=self._config,
            on_progress=self._on_progress,
            on_error=self._on_detection_exhausted,
            clock=wall_clock,
        )
        self._router = MessageRouter(
            {
                MessageKind.PING: self._on_ping,
                MessageKind.GET_DETECTION_RESULT: self._on_get_result,
                MessageKind.TRIGGER_DETECTION: self._on_trigger,
            },
            Direction.TO_AGENT,
        )
        self._closed = False

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def closed(self) -> bool:
        return self._closed

    # -- Lifecycle --

    async def start(self, *, initial_detection: bool = True) -> None:
        with bound_page_instance(self.peer_id, self._instance_id):
            await self.channel.start()
            if initial_detection:
                self.orchestrator.schedule("initial")

    async def close(self) -> None:
        """Tear down timers, queue, cache and transport. Idempotent."""
        if self._closed:
            return
        self._closed = True
        with bound_page_instance(self.peer_id, self._instance_id):
            await self.orchestrator.close()
            await self.channel.close()
            logger.info("Page instance closed: %s", self._instance_id)

    async def handle_navigation(self) -> str:
        """Abort pending work for the old page and start a new instance id.

        The queue is cleared, not flushed; consumers get ``navigationIntent``
        for the instance that is going away.  Returns the new instance id.
        """
        old_id = self._instance_id
        self.orchestrator.cancel()
        self.channel.clear_queue()
        self.channel.cache.invalidate(InvalidationReason.NAVIGATION)
        self._instance_id = new_instance_id()
        self.orchestrator.page_instance_id = self._instance_id
        self.reporter.reset(self._instance_id)
        logger.info("Navigation: %s -> %s", old_id, self._instance_id)
        try:
            await self.channel.send(navigation_intent(old_id))
        except TransportError as exc:
            logger.warning("navigationIntent not delivered: %s", exc)
        return self._instance_id

    # -- Reads --

    def get_detection_result(self) -> ResultRead:
        """Live result while connected; last delivered one (maybe stale) otherwise."""
        if self.channel.state is ConnectionState.CONNECTED:
            live = self.orchestrator.last_published
            if live is not None and live.page_instance_id == self._instance_id:
                return ResultRead(result=live, stale=False, source="live")
        cached = self.channel.last_known()
        if cached is not None:
            return ResultRead(result=cached.result, stale=cached.is_stale, source="cache")
        return ResultRead(result=None, stale=False, source="none")

    async def handle_message(self, message: Message | Mapping[str, Any]) -> Any:
        """Dispatch one consumer → agent message and return the reply payload."""
        if not isinstance(message, Message):
            message = Message.from_wire(message)
        with bound_page_instance(self.peer_id, self._instance_id):
            return await self._router.dispatch(message)

    # -- Message handlers --

    async def _on_ping(self, message: Message) -> dict[str, Any]:
        return {"ok": True, "timestamp": message.payload.get("timestamp"), "pageInstanceId": self._instance_id}

    async def _on_get_result(self, message: Message) -> dict[str, Any]:
        return self.get_detection_result().to_payload()

    async def _on_trigger(self, message: Message) -> dict[str, Any]:
        if self._closed:
            return {"accepted": False}
        self.orchestrator.schedule("consumer")
        return {"accepted": True}

    # -- Orchestrator / channel callbacks --

    async def _publish(self, result: DetectionResult) -> None:
        message = form_detected(result) if result.is_form_detected else detection_complete(result)
        try:
            await self.channel.send(message)
        except TransportError as exc:
            logger.warning("Result gen=%d not delivered: %s", result.generation, exc)

    async def _on_progress(self, phase: str, result: DetectionResult) -> None:
        try:
            await self.channel.send(progressive_update(result, phase))
        except TransportError as exc:
            logger.debug("progressiveUpdate dropped: %s", exc)

    async def _on_detection_exhausted(self, error: DetectionExhaustedError) -> None:
        await self.reporter.report_exception(error, ErrorContext.DETECTION)

    async def _on_channel_fatal(self, exc: BaseException) -> None:
        await self.reporter.report_exception(exc, ErrorContext.CHANNEL)

    async def _send_report(self, message: Message) -> None:
        # a failed channel refuses send(); keep the report for after reset()
        if self.channel.state is ConnectionState.FAILED:
            self.channel.post(message)
            return
        await self.channel.send(message)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

InstanceFactory = Callable[[str, SnapshotSource, Transport], PageInstance]


class PageInstanceRegistry:
    """Owns every live ``PageInstance``, keyed by peer (tab) id."""

    def __init__(self, config: RegFormConfig | None = None, factory: InstanceFactory | None = None) -> None:
        self._config = config or RegFormConfig()
        self._factory = factory or self._default_factory
        self._instances: dict[str, PageInstance] = {}
        self._lock = asyncio.Lock()

    def _default_factory(self, peer_id: str, source: SnapshotSource, transport: Transport) -> PageInstance:
        return PageInstance(peer_id, source, transport, config=self._config)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._instances

    def __len__(self) -> int:
        return len(self._instances)

    @property
    def active_instances(self) -> int:
        return len(self._instances)

    async def register(
        self,
        peer_id: str,
        snapshot_source: SnapshotSource,
        transport: Transport,
        *,
        start: bool = True,
        initial_detection: bool = True,
    ) -> PageInstance:
        """Create the instance for *peer_id*, tearing down any previous one."""
        instance = self._factory(peer_id, snapshot_source, transport)
        async with self._lock:
            previous = self._instances.pop(peer_id, None)
            self._instances[peer_id] = instance
        if previous is not None:
            logger.info("Replacing page instance for peer %s", peer_id)
            await previous.close()
        if start:
            await instance.start(initial_detection=initial_detection)
        logger.info("Page instance registered: peer=%s id=%s", peer_id, instance.instance_id)
        return instance

    def get(self, peer_id: str) -> PageInstance:
        instance = self._instances.get(peer_id)
        if instance is None:
            raise PageInstanceNotFoundError(f"no page instance for peer '{peer_id}'")
        return instance

    async def navigate(self, peer_id: str) -> str:
        return await self.get(peer_id).handle_navigation()

    async def remove(self, peer_id: str) -> None:
        async with self._lock:
            instance = self._instances.pop(peer_id, None)
        if instance is None:
            return
        await instance.close()
        logger.info("Page instance removed: peer=%s", peer_id)

    async def shutdown(self) -> None:
        async with self._lock:
            instances = list(self._instances.items())
            self._instances.clear()
        for peer_id, instance in instances:
            await instance.close()
            logger.info("Page instance cleaned up: peer=%s", peer_id)
