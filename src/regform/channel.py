# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Resilient messaging channel over an unreliable transport.

Connection state machine::

    disconnected → connecting → connected
          ↑             │            │ (3 missed pings / send timeout)
          └─────────────┴────────────┘
    (max_retries exhausted or permanent invalidation) → failed

Design choices:

- **Health check** - ping every ``ping_interval`` with ``ping_timeout``;
  ``max_missed_pings`` consecutive misses drop the connection.
- **Reconnect** - exponential backoff (``ChannelConfig.backoff_delay``) for
  at most ``max_retries`` attempts, then ``failed`` until ``reset()``.
- **Queue** - bounded FIFO of ``QueuedMessage``; full → oldest dropped,
  expired entries are never delivered.
- **Ordering** - one ``asyncio.Lock`` serializes flush and sends, and every
  send flushes the queue first, so queued messages always go out before new
  ones.
- **Timeouts** - every transport call is wrapped in ``asyncio.wait_for``.
  A timed-out message is re-queued at the head; a permanent error is never
  retried and is raised to the caller.
- **Background tasks** - ``done_callback`` crash-restart for the health loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from .cache import CachedRead, InvalidationReason, ResultCache
from .config import ChannelConfig
from .errors import (
    ChannelFailedError,
    PermanentTransportError,
    ProtocolError,
    SendTimeoutError,
    TransientTransportError,
    TransportError,
)
from .messages import Message, MessageKind, ping

logger = logging.getLogger(__name__)

# Transport failures that are worth a reconnect.
_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (TransientTransportError, ConnectionError, OSError)

_CACHED_KINDS = frozenset({MessageKind.DETECTION_COMPLETE, MessageKind.FORM_DETECTED})


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PeerStatus:
    """Immutable view of the channel state for observers."""

    state: ConnectionState
    retry_count: int = 0
    last_error: str | None = None
    queued: int = 0


@dataclass(frozen=True, slots=True)
class QueuedMessage:
    message: Message
    enqueued_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class ChannelStats:
    delivered: int = 0
    queued: int = 0
    flushed: int = 0
    dropped_expired: int = 0
    dropped_overflow: int = 0
    timeouts: int = 0
    missed_pings: int = 0
    reconnect_attempts: int = 0


class Transport(Protocol):
    """Peer connection. ``send`` returns the peer's reply, if any."""

    async def connect(self) -> None: ...

    async def send(self, message: Message) -> Message | None: ...

    async def close(self) -> None: ...


StateListener = Callable[[PeerStatus], None]
FatalListener = Callable[[BaseException], Awaitable[None]]


class ResilientChannel:
    """Queueing, reconnecting channel to one peer.

    Usage::

        channel = ResilientChannel(transport, ChannelConfig())
        await channel.start()
        await channel.send(messages.detection_complete(result))  # queued if offline
        ...
        await channel.close()
    """

    def __init__(
        self,
        transport: Transport,
        config: ChannelConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        cache: ResultCache | None = None,
        on_state_change: StateListener | None = None,
        on_fatal: FatalListener | None = None,
    ) -> None:
        self._transport = transport
        self._config = config or ChannelConfig()
        self._clock = clock
        self._cache = cache or ResultCache(ttl=self._config.cache_ttl, clock=clock)
        self._on_state_change = on_state_change
        self._on_fatal = on_fatal

        self._state = ConnectionState.DISCONNECTED
        self._retry_count = 0
        self._last_error: str | None = None
        self._missed_pings = 0
        self._queue: deque[QueuedMessage] = deque()
        self._lock = asyncio.Lock()
        self._health_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._waiters: list[tuple[frozenset[ConnectionState], asyncio.Future]] = []
        self._stats = ChannelStats()
        self._started = False
        self._closed = False

    # -- Properties --

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> PeerStatus:
        return PeerStatus(
            state=self._state,
            retry_count=self._retry_count,
            last_error=self._last_error,
            queued=len(self._queue),
        )

    @property
    def stats(self) -> ChannelStats:
        return self._stats

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def queued_messages(self) -> tuple[Message, ...]:
        return tuple(item.message for item in self._queue)

    def last_known(self) -> CachedRead | None:
        """Most recently delivered result, readable in any state."""
        return self._cache.lookup()

    # -- Lifecycle --

    async def start(self) -> None:
        """Begin connecting and start the health check."""
        if self._started or self._closed:
            return
        self._started = True
        self._start_health_loop()
        self._schedule_reconnect()

    async def close(self) -> None:
        """Stop all background work, drop the queue and close the transport."""
        if self._closed:
            return
        self._closed = True
        for task in (self._health_task, self._reconnect_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._health_task = None
        self._reconnect_task = None
        self.clear_queue()
        self._cache.invalidate(InvalidationReason.TEARDOWN)
        try:
            await asyncio.wait_for(self._transport.close(), timeout=self._config.send_timeout)
        except (TimeoutError, TransportError, OSError) as exc:
            logger.warning("Transport close failed: %s", exc)
        self._set_state(ConnectionState.DISCONNECTED)
        for _, fut in self._waiters:
            if not fut.done():
                fut.cancel()
        self._waiters.clear()

    def reset(self, transport: Transport | None = None) -> None:
        """Leave ``failed`` (or restart a stalled reconnect) from scratch."""
        if self._closed:
            raise ChannelFailedError("channel is closed")
        if transport is not None:
            self._transport = transport
        if self._state is ConnectionState.CONNECTED:
            return
        self._retry_count = 0
        self._last_error = None
        self._missed_pings = 0
        self._set_state(ConnectionState.DISCONNECTED)
        if self._started:
            self._start_health_loop()
        self._schedule_reconnect()

    def clear_queue(self) -> int:
        """Discard every pending message (navigation); returns how many."""
        count = len(self._queue)
        self._queue.clear()
        if count:
            logger.debug("Cleared %d queued message(s)", count)
        return count

    async def wait_for_state(self, *states: ConnectionState, timeout: float | None = None) -> ConnectionState:
        """Wait until the channel enters one of *states*."""
        if self._state in states:
            return self._state
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        entry = (frozenset(states), fut)
        self._waiters.append(entry)
        try:
            return await asyncio.wait_for(fut, timeout)
        finally:
            with contextlib.suppress(ValueError):
                self._waiters.remove(entry)

    # -- Sending --

    async def send(self, message: Message) -> Message | None:
        """Deliver *message* now, or queue it while not connected.

        Returns the peer's reply (None when queued or when the peer has none).

        Raises:
            ChannelFailedError: the channel is ``failed`` or closed.
            PermanentTransportError: the peer was invalidated during this send.
        """
        if self._closed:
            raise ChannelFailedError("channel is closed")
        if self._state is ConnectionState.FAILED:
            raise ChannelFailedError(f"channel failed: {self._last_error}")
        if self._state is not ConnectionState.CONNECTED:
            self._enqueue(message)
            return None

        async with self._lock:
            await self._flush_locked()
            if self._state is not ConnectionState.CONNECTED:
                self._enqueue(message)
                return None
            _, reply = await self._deliver_locked(message, None)
            return reply

    def post(self, message: Message) -> None:
        """Queue *message* for the next connection, even while ``failed``.

        The message goes out once ``reset()`` reconnects, unless navigation
        clears the queue or it expires first.

        Raises:
            ChannelFailedError: the channel is closed.
        """
        if self._closed:
            raise ChannelFailedError("channel is closed")
        self._enqueue(message)

    def _enqueue(self, message: Message) -> None:
        now = self._clock()
        self._prune_expired(now)
        if len(self._queue) >= self._config.queue_capacity:
            dropped = self._queue.popleft()
            self._stats.dropped_overflow += 1
            logger.warning("Queue full (%d): dropped oldest %s", self._config.queue_capacity, dropped.message.kind)
        self._queue.append(QueuedMessage(message, enqueued_at=now, expires_at=now + self._config.queue_ttl))
        self._stats.queued += 1

    def _requeue_front(self, item: QueuedMessage) -> None:
        self._queue.appendleft(item)
        while len(self._queue) > self._config.queue_capacity:
            self._queue.pop()
            self._stats.dropped_overflow += 1

    def _prune_expired(self, now: float) -> None:
        expired = [item for item in self._queue if item.is_expired(now)]
        if not expired:
            return
        for item in expired:
            self._queue.remove(item)
        self._stats.dropped_expired += len(expired)
        logger.warning("Dropped %d expired queued message(s)", len(expired))

    async def _flush_locked(self) -> None:
        """Send queued messages in enqueue order. Caller holds ``_lock``."""
        while self._queue and self._state is ConnectionState.CONNECTED:
            item = self._queue.popleft()
            if item.is_expired(self._clock()):
                self._stats.dropped_expired += 1
                logger.warning("Dropped expired queued %s", item.message.kind)
                continue
            delivered, _ = await self._deliver_locked(item.message, item)
            if delivered:
                self._stats.flushed += 1

    async def _deliver_locked(self, message: Message, queued: QueuedMessage | None) -> tuple[bool, Message | None]:
        try:
            reply = await asyncio.wait_for(self._transport.send(message), timeout=self._config.send_timeout)
        except TimeoutError:
            self._stats.timeouts += 1
            self._requeue_or_enqueue(message, queued)
            timeout = self._config.send_timeout
            self._mark_disconnected(SendTimeoutError(f"send of {message.kind} timed out", timeout=timeout))
            return False, None
        except PermanentTransportError as exc:
            await self._fail_permanently(exc)
            raise
        except _TRANSIENT_ERRORS as exc:
            self._requeue_or_enqueue(message, queued)
            self._mark_disconnected(exc)
            return False, None

        self._stats.delivered += 1
        if message.kind in _CACHED_KINDS:
            try:
                result = message.result
            except ProtocolError as exc:
                logger.warning("Delivered %s with undecodable result: %s", message.kind, exc)
            else:
                if result is not None:
                    self._cache.store(result)
        return True, reply

    def _requeue_or_enqueue(self, message: Message, queued: QueuedMessage | None) -> None:
        if queued is not None:
            self._requeue_front(queued)
            return
        now = self._clock()
        self._requeue_front(QueuedMessage(message, enqueued_at=now, expires_at=now + self._config.queue_ttl))

    # -- State transitions --

    def _set_state(self, new: ConnectionState) -> None:
        if new is self._state:
            return
        logger.info("Channel %s -> %s (retries=%d)", self._state, new, self._retry_count)
        self._state = new
        for states, fut in list(self._waiters):
            if new in states and not fut.done():
                fut.set_result(new)
        if self._on_state_change is not None:
            try:
                self._on_state_change(self.status)
            except Exception as exc:  # noqa: BLE001 - observer bugs must not break the channel
                logger.warning("State listener raised: %s", exc)

    def _mark_disconnected(self, exc: BaseException) -> None:
        if self._state in (ConnectionState.FAILED, ConnectionState.DISCONNECTED) or self._closed:
            return
        self._last_error = str(exc) or type(exc).__name__
        logger.warning("Channel lost connection: %s", self._last_error)
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    async def _fail_permanently(self, exc: BaseException) -> None:
        self._last_error = str(exc) or type(exc).__name__
        dropped = self.clear_queue()
        logger.error("Channel permanently failed: %s (dropped %d queued)", self._last_error, dropped)
        self._set_state(ConnectionState.FAILED)
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self._on_fatal is not None:
            await self._on_fatal(exc)

    # -- Internal: reconnect --

    def _schedule_reconnect(self) -> None:
        if self._closed or self._state is ConnectionState.FAILED:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return  # the running loop re-checks the state after each attempt
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())
        self._reconnect_task.add_done_callback(self._reconnect_done)

    async def _reconnect_loop(self) -> None:
        cfg = self._config
        for attempt in range(cfg.max_retries):
            self._retry_count = attempt + 1
            self._stats.reconnect_attempts += 1
            self._set_state(ConnectionState.CONNECTING)
            try:
                await asyncio.wait_for(self._transport.connect(), timeout=cfg.send_timeout)
            except PermanentTransportError as exc:
                await self._fail_permanently(exc)
                return
            except (TimeoutError, *_TRANSIENT_ERRORS) as exc:
                self._last_error = str(exc) or type(exc).__name__
                logger.debug("Connect attempt %d/%d failed: %s", attempt + 1, cfg.max_retries, self._last_error)
                self._set_state(ConnectionState.DISCONNECTED)
            else:
                self._missed_pings = 0
                self._set_state(ConnectionState.CONNECTED)
                try:
                    async with self._lock:
                        await self._flush_locked()
                except PermanentTransportError:
                    return  # already failed and reported
                if self._state is ConnectionState.CONNECTED:
                    self._retry_count = 0
                    self._last_error = None
                    return
                if self._state is ConnectionState.FAILED:
                    return
            if attempt + 1 < cfg.max_retries:
                await asyncio.sleep(cfg.backoff_delay(attempt))

        logger.error("Channel giving up after %d attempt(s): %s", cfg.max_retries, self._last_error)
        self._set_state(ConnectionState.FAILED)
        if self._on_fatal is not None:
            await self._on_fatal(ChannelFailedError(f"reconnect failed after {cfg.max_retries} attempts"))

    def _reconnect_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Reconnect loop crashed: %s", exc)

    # -- Internal: health check --

    def _start_health_loop(self) -> None:
        """Launch (or re-launch) the ping loop."""
        if self._closed or (self._health_task is not None and not self._health_task.done()):
            return
        self._health_task = asyncio.get_running_loop().create_task(self._health_loop())
        self._health_task.add_done_callback(self._health_done)

    def _health_done(self, task: asyncio.Task) -> None:
        """Restart the health loop if it crashed (not cancelled)."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Health check crashed, restarting: %s", exc)
            with contextlib.suppress(RuntimeError):
                self._start_health_loop()

    async def _health_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._config.ping_interval)
            if self._state is not ConnectionState.CONNECTED:
                continue
            if await self._ping():
                self._missed_pings = 0
                continue
            self._missed_pings += 1
            self._stats.missed_pings += 1
            logger.debug("Missed ping %d/%d", self._missed_pings, self._config.max_missed_pings)
            if self._missed_pings >= self._config.max_missed_pings:
                self._missed_pings = 0
                self._mark_disconnected(TransientTransportError(f"{self._config.max_missed_pings} missed pings"))

    async def _ping(self) -> bool:
        async with self._lock:
            if self._state is not ConnectionState.CONNECTED:
                return True
            try:
                await asyncio.wait_for(self._transport.send(ping()), timeout=self._config.ping_timeout)
            except PermanentTransportError as exc:
                await self._fail_permanently(exc)
                return True
            except (TimeoutError, *_TRANSIENT_ERRORS):
                return False
            return True
