# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Closed message taxonomy between the page-side agent and UI consumers.

Every ``MessageKind`` has exactly one direction.  ``MessageRouter`` refuses
to start unless its handler map covers every kind of its direction and
nothing else, so adding a kind without a handler fails at construction time
instead of at delivery time.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from . import DetectionResult
from .errors import ProtocolError
from .serializer import from_dict, to_dict


class MessageKind(StrEnum):
    PING = "ping"
    NAVIGATION_INTENT = "navigationIntent"
    PROGRESSIVE_UPDATE = "progressiveUpdate"
    DETECTION_COMPLETE = "detectionComplete"
    FORM_DETECTED = "formDetected"
    DETECTION_ERROR = "detectionError"
    GET_DETECTION_RESULT = "getDetectionResult"
    TRIGGER_DETECTION = "triggerDetection"


class Direction(StrEnum):
    TO_AGENT = "consumer_to_agent"
    TO_CONSUMER = "agent_to_consumer"


DIRECTIONS: MappingProxyType[MessageKind, Direction] = MappingProxyType(
    {
        MessageKind.PING: Direction.TO_AGENT,
        MessageKind.GET_DETECTION_RESULT: Direction.TO_AGENT,
        MessageKind.TRIGGER_DETECTION: Direction.TO_AGENT,
        MessageKind.NAVIGATION_INTENT: Direction.TO_CONSUMER,
        MessageKind.PROGRESSIVE_UPDATE: Direction.TO_CONSUMER,
        MessageKind.DETECTION_COMPLETE: Direction.TO_CONSUMER,
        MessageKind.FORM_DETECTED: Direction.TO_CONSUMER,
        MessageKind.DETECTION_ERROR: Direction.TO_CONSUMER,
    }
)

# kinds whose payload carries a serialized DetectionResult under "result"
RESULT_KINDS = frozenset({MessageKind.PROGRESSIVE_UPDATE, MessageKind.DETECTION_COMPLETE, MessageKind.FORM_DETECTED})


def kinds_for(direction: Direction) -> frozenset[MessageKind]:
    return frozenset(k for k, d in DIRECTIONS.items() if d is direction)


# ---------------------------------------------------------------------------
# Message
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Message:
    kind: MessageKind
    page_instance_id: str = ""
    payload: Mapping[str, Any] = field(default_factory=dict)
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex, compare=False)

    @property
    def direction(self) -> Direction:
        return DIRECTIONS[self.kind]

    @property
    def result(self) -> DetectionResult | None:
        """Decoded DetectionResult for result-carrying kinds."""
        if self.kind not in RESULT_KINDS or "result" not in self.payload:
            return None
        return from_dict(self.payload["result"])

    @property
    def generation(self) -> int | None:
        if self.kind not in RESULT_KINDS:
            return None
        try:
            return int(self.payload["result"]["generation"])
        except (KeyError, TypeError, ValueError):
            return None

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "id": self.message_id,
            "pageInstanceId": self.page_instance_id,
            "payload": dict(self.payload),
        }

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> Message:
        if not isinstance(data, Mapping):
            raise ProtocolError(f"message must be an object, got {type(data).__name__}")
        try:
            kind = MessageKind(data["type"])
        except KeyError:
            raise ProtocolError("message has no 'type'") from None
        except ValueError:
            raise ProtocolError(f"unknown message type: {data['type']!r}") from None
        payload = data.get("payload") or {}
        if not isinstance(payload, Mapping):
            raise ProtocolError("message payload must be an object")
        return cls(
            kind=kind,
            page_instance_id=str(data.get("pageInstanceId", "")),
            payload=dict(payload),
            message_id=str(data.get("id") or uuid.uuid4().hex),
        )


# -- Constructors --


def ping(timestamp: float | None = None) -> Message:
    return Message(MessageKind.PING, payload={"timestamp": time.time() if timestamp is None else timestamp})


def navigation_intent(page_instance_id: str) -> Message:
    return Message(MessageKind.NAVIGATION_INTENT, page_instance_id, {"pageInstanceId": page_instance_id})


def progressive_update(result: DetectionResult, phase: str) -> Message:
    return Message(
        MessageKind.PROGRESSIVE_UPDATE,
        result.page_instance_id,
        {"phase": phase, "result": to_dict(result)},
    )


def detection_complete(result: DetectionResult) -> Message:
    return Message(MessageKind.DETECTION_COMPLETE, result.page_instance_id, {"result": to_dict(result)})


def form_detected(result: DetectionResult) -> Message:
    return Message(MessageKind.FORM_DETECTED, result.page_instance_id, {"result": to_dict(result)})


def detection_error(page_instance_id: str, message: str, context: str, is_fatal: bool) -> Message:
    return Message(
        MessageKind.DETECTION_ERROR,
        page_instance_id,
        {"message": message, "context": context, "isFatal": is_fatal},
    )


def get_detection_result(page_instance_id: str) -> Message:
    return Message(MessageKind.GET_DETECTION_RESULT, page_instance_id, {"pageInstanceId": page_instance_id})


def trigger_detection(page_instance_id: str = "") -> Message:
    return Message(MessageKind.TRIGGER_DETECTION, page_instance_id)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

Handler = Callable[[Message], Awaitable[Any]]


def check_handlers(handlers: Mapping[MessageKind, Handler], direction: Direction) -> None:
    """Raise ProtocolError unless *handlers* covers exactly the kinds of *direction*."""
    expected = kinds_for(direction)
    provided = frozenset(handlers)
    missing = expected - provided
    extra = provided - expected
    if missing or extra:
        parts = []
        if missing:
            parts.append("missing: " + ", ".join(sorted(missing)))
        if extra:
            parts.append("wrong direction: " + ", ".join(sorted(extra)))
        raise ProtocolError(f"handler map for {direction} is not exhaustive ({'; '.join(parts)})")


class MessageRouter:
    """Dispatches incoming messages of one direction to their handlers."""

    def __init__(self, handlers: Mapping[MessageKind, Handler], direction: Direction) -> None:
        check_handlers(handlers, direction)
        self._handlers = dict(handlers)
        self.direction = direction

    async def dispatch(self, message: Message) -> Any:
        if message.direction is not self.direction:
            raise ProtocolError(f"{message.kind} is {message.direction}, router handles {self.direction}")
        return await self._handlers[message.kind](message)
