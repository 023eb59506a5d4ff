# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Concrete ``Transport`` implementations.

- ``LoopbackTransport`` - in-process delivery to a handler (usually
  ``ResultConsumer.receive``), with switches to simulate an offline peer,
  slow sends and permanent invalidation.
- ``HttpTransport`` - POSTs wire messages to a consumer endpoint with httpx.
  HTTP 410 Gone means the consumer invalidated this peer for good.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from .errors import PermanentTransportError, ProtocolError, TransientTransportError
from .messages import Message, MessageKind

logger = logging.getLogger(__name__)

Handler = Callable[[Message], Awaitable[Any]]


class LoopbackTransport:
    """Deliver messages straight to *handler* in the same event loop."""

    def __init__(self, handler: Handler | None = None) -> None:
        self._handler = handler
        self.online = True
        self.invalidated = False
        self.delay = 0.0  # seconds added to every send (and connect)
        self.sent: list[Message] = []
        self.connects = 0
        self.closed = False

    def go_offline(self) -> None:
        self.online = False

    def go_online(self) -> None:
        self.online = True

    def invalidate(self) -> None:
        self.invalidated = True

    def _check(self) -> None:
        if self.invalidated:
            raise PermanentTransportError("peer context invalidated")
        if not self.online:
            raise TransientTransportError("peer unreachable")

    async def connect(self) -> None:
        self.connects += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self._check()

    async def send(self, message: Message) -> Message | None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self._check()
        self.sent.append(message)
        if self._handler is None or message.kind is MessageKind.PING:
            return None
        reply = await self._handler(message)
        return reply if isinstance(reply, Message) else None

    async def close(self) -> None:
        self.closed = True


class HttpTransport:
    """Wire messages over HTTP.

    Endpoints (relative to *base_url*):
      ``GET  /health``    - connect / liveness
      ``POST /messages``  - one wire message per request; optional JSON reply
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code == 410:
            raise PermanentTransportError(f"peer gone (HTTP 410): {response.text[:100]}")
        if response.status_code >= 400:
            raise TransientTransportError(f"HTTP {response.status_code}")

    async def connect(self) -> None:
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError as exc:
            raise TransientTransportError(f"connect failed: {exc}") from exc
        self._raise_for_status(response)

    async def send(self, message: Message) -> Message | None:
        try:
            response = await self._client.post("/messages", json=message.to_wire())
        except httpx.HTTPError as exc:
            raise TransientTransportError(f"send failed: {exc}") from exc
        self._raise_for_status(response)
        if response.status_code == 204 or not response.content:
            return None
        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError(f"reply is not JSON: {exc}") from exc
        if isinstance(data, dict) and "type" in data:
            return Message.from_wire(data)
        return None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
