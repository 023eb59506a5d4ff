# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Consumer-facing error reports (``detectionError`` messages).

Key public API:

- ``ErrorContext``          – where the failure happened.
- ``DetectionErrorPayload`` – frozen payload (message, context, is_fatal).
- ``sanitize_detail()``     – scrub secrets and filesystem paths.
- ``from_exception()``      – map an exception to a payload.
- ``ErrorReporter``         – per page instance sender with notification caps.

A zero-confidence result is *not* an error; only exhausted detection and
channel failures are fatal.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from .errors import (
    ChannelFailedError,
    DetectionExhaustedError,
    PermanentTransportError,
    SnapshotError,
    TransientTransportError,
    TransportError,
)
from .messages import Message, detection_error

logger = logging.getLogger(__name__)

MAX_DETAIL_LENGTH = 200
DEFAULT_MAX_NOTIFICATIONS = 3


class ErrorContext(StrEnum):
    DETECTION = "detection"
    SNAPSHOT = "snapshot"
    CHANNEL = "channel"
    INTERNAL = "internal"


# ── Sanitization ─────────────────────────────────────────────────────

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"Bearer\s+\S+"), "Bearer <redacted>"),
    (re.compile(r"Basic\s+[A-Za-z0-9+/=]{8,}"), "Basic <redacted>"),
    (re.compile(r"(?:API_KEY|SECRET|TOKEN|PASSWORD|SESSION)\s*[=:]\s*\S+", re.IGNORECASE), "<redacted>"),
    (re.compile(r"://[^@\s/]+@"), "://<redacted>@"),
    # identifiers users type into registration forms
    (re.compile(r"\b\d{2}-\d{7}\b"), "<ein>"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "<ssn>"),
]

_PATH_PATTERN = re.compile(
    r"(/(?:Users|home|tmp|var|etc|opt|root|srv|usr|Library|private|mnt)/[\w./-]+"
    r"|[A-Z]:\\[\w.\\-]+)"
)


def sanitize_detail(text: str) -> str:
    """Scrub secrets, form identifiers and paths, then truncate."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    text = _PATH_PATTERN.sub("<path>", text)
    if len(text) > MAX_DETAIL_LENGTH:
        text = text[:MAX_DETAIL_LENGTH] + "..."
    return text


# ── Payload ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class DetectionErrorPayload:
    message: str
    context: ErrorContext
    is_fatal: bool

    def to_message(self, page_instance_id: str) -> Message:
        return detection_error(page_instance_id, self.message, self.context.value, self.is_fatal)


def from_exception(exc: BaseException, context: ErrorContext | None = None) -> DetectionErrorPayload:
    """Map *exc* onto a sanitized payload; *context* overrides the inferred one."""
    if isinstance(exc, DetectionExhaustedError):
        inferred, fatal = ErrorContext.DETECTION, True
    elif isinstance(exc, (PermanentTransportError, ChannelFailedError)):
        inferred, fatal = ErrorContext.CHANNEL, True
    elif isinstance(exc, TransientTransportError):
        inferred, fatal = ErrorContext.CHANNEL, False
    elif isinstance(exc, SnapshotError):
        inferred, fatal = ErrorContext.SNAPSHOT, False
    else:
        inferred, fatal = ErrorContext.INTERNAL, False
    text = sanitize_detail(str(exc) or type(exc).__name__)
    return DetectionErrorPayload(message=text, context=context or inferred, is_fatal=fatal)


# ── Reporter ─────────────────────────────────────────────────────────

Sender = Callable[[Message], Awaitable[object]]


class ErrorReporter:
    """Send ``detectionError`` messages for one page instance.

    Fatal reports are capped at ``max_fatal`` per page instance; non-fatal
    ones at the same number per context.  Suppressed reports are still
    logged.
    """

    def __init__(
        self,
        page_instance_id: str,
        send: Sender,
        *,
        max_fatal: int = DEFAULT_MAX_NOTIFICATIONS,
    ) -> None:
        self.page_instance_id = page_instance_id
        self._send = send
        self._max = max_fatal
        self._fatal_sent = 0
        self._per_context: Counter[ErrorContext] = Counter()

    @property
    def fatal_sent(self) -> int:
        return self._fatal_sent

    def sent_for(self, context: ErrorContext) -> int:
        return self._per_context[context]

    def reset(self, page_instance_id: str | None = None) -> None:
        """New page instance (navigation): counters start over."""
        if page_instance_id is not None:
            self.page_instance_id = page_instance_id
        self._fatal_sent = 0
        self._per_context.clear()

    def _allowed(self, payload: DetectionErrorPayload) -> bool:
        if payload.is_fatal:
            return self._fatal_sent < self._max
        return self._per_context[payload.context] < self._max

    async def report(self, payload: DetectionErrorPayload) -> bool:
        """Send *payload* unless capped. Returns True when the channel accepted it.

        Only accepted notifications count against the caps.
        """
        log = logger.error if payload.is_fatal else logger.warning
        log("Detection error [%s] fatal=%s: %s", payload.context, payload.is_fatal, payload.message)
        if not self._allowed(payload):
            logger.debug("Error notification suppressed (cap %d reached)", self._max)
            return False
        try:
            await self._send(payload.to_message(self.page_instance_id))
        except TransportError as exc:
            logger.warning("Could not deliver error notification: %s", exc)
            return False
        if payload.is_fatal:
            self._fatal_sent += 1
        self._per_context[payload.context] += 1
        return True

    async def report_exception(self, exc: BaseException, context: ErrorContext | None = None) -> bool:
        return await self.report(from_exception(exc, context))
