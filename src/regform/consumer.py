# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""UI-side receiver of agent → consumer messages.

Applies the generation rule per page instance: a settled result is accepted
only if its generation is greater than the last accepted one.  Previews
(``progressiveUpdate``) are tracked separately, so the settled result of the
same pass is never mistaken for a duplicate, but a preview older than the
accepted result is dropped.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from . import DetectionResult
from .errors import ProtocolError
from .messages import Direction, Message, MessageKind, MessageRouter

logger = logging.getLogger(__name__)

ResultListener = Callable[[DetectionResult], Awaitable[None]]

MAX_RETIRED_INSTANCES = 256


class ResultConsumer:
    """Keeps the newest accepted result per page instance."""

    def __init__(self, on_result: ResultListener | None = None, *, max_retired: int = MAX_RETIRED_INSTANCES) -> None:
        self._on_result = on_result
        self._accepted: dict[str, DetectionResult] = {}
        self._previews: dict[str, DetectionResult] = {}
        self._errors: list[dict[str, Any]] = []
        # ids of navigated-away instances, oldest first; bounded
        self._navigated: set[str] = set()
        self._retired: deque[str] = deque()
        self._max_retired = max_retired
        self.discarded = 0
        self._router = MessageRouter(
            {
                MessageKind.NAVIGATION_INTENT: self._on_navigation,
                MessageKind.PROGRESSIVE_UPDATE: self._on_preview,
                MessageKind.DETECTION_COMPLETE: self._on_result_message,
                MessageKind.FORM_DETECTED: self._on_result_message,
                MessageKind.DETECTION_ERROR: self._on_error,
            },
            Direction.TO_CONSUMER,
        )

    # -- Reads --

    def current(self, page_instance_id: str) -> DetectionResult | None:
        return self._accepted.get(page_instance_id)

    def preview(self, page_instance_id: str) -> DetectionResult | None:
        return self._previews.get(page_instance_id)

    @property
    def errors(self) -> tuple[dict[str, Any], ...]:
        return tuple(self._errors)

    def last_generation(self, page_instance_id: str) -> int:
        accepted = self._accepted.get(page_instance_id)
        return accepted.generation if accepted is not None else 0

    def accepts(self, page_instance_id: str, generation: int) -> bool:
        if page_instance_id in self._navigated:
            return False
        return generation > self.last_generation(page_instance_id)

    # -- Delivery --

    async def receive(self, message: Message | dict[str, Any]) -> Any:
        if not isinstance(message, Message):
            message = Message.from_wire(message)
        return await self._router.dispatch(message)

    async def _on_result_message(self, message: Message) -> bool:
        result = message.result
        if result is None:
            raise ProtocolError(f"{message.kind} without result payload")
        if not self.accepts(result.page_instance_id, result.generation):
            self.discarded += 1
            logger.debug(
                "Discarded %s gen=%d (last=%d)",
                message.kind,
                result.generation,
                self.last_generation(result.page_instance_id),
            )
            return False
        self._accepted[result.page_instance_id] = result
        self._previews.pop(result.page_instance_id, None)
        if self._on_result is not None:
            await self._on_result(result)
        return True

    async def _on_preview(self, message: Message) -> bool:
        result = message.result
        if result is None:
            raise ProtocolError("progressiveUpdate without result payload")
        preview = self._previews.get(result.page_instance_id)
        if not self.accepts(result.page_instance_id, result.generation) or (
            preview is not None and preview.generation >= result.generation
        ):
            self.discarded += 1
            return False
        self._previews[result.page_instance_id] = result
        return True

    async def _on_navigation(self, message: Message) -> bool:
        instance_id = message.payload.get("pageInstanceId") or message.page_instance_id
        self._retire(instance_id)
        self._accepted.pop(instance_id, None)
        self._previews.pop(instance_id, None)
        logger.debug("Page instance %s navigated away", instance_id)
        return True

    def _retire(self, instance_id: str) -> None:
        if instance_id in self._navigated:
            return
        if len(self._retired) >= self._max_retired:
            self._navigated.discard(self._retired.popleft())
        self._retired.append(instance_id)
        self._navigated.add(instance_id)

    async def _on_error(self, message: Message) -> bool:
        self._errors.append({"pageInstanceId": message.page_instance_id, **message.payload})
        return True
