# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for ResilientChannel — state machine, queue, retries, timeouts.

All transports are in-process ``LoopbackTransport`` instances; queue expiry
uses a fake clock, everything else runs on millisecond-scale real delays.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from regform.channel import ConnectionState, ResilientChannel
from regform.errors import ChannelFailedError, PermanentTransportError
from regform.messages import MessageKind, detection_complete, navigation_intent
from regform.transports import LoopbackTransport
from tests._helpers import FakeClock, fast_config, make_result, wait_until


def _channel(transport=None, *, clock=None, **overrides) -> tuple[ResilientChannel, LoopbackTransport, AsyncMock]:
    transport = transport or LoopbackTransport()
    on_fatal = AsyncMock()
    kwargs = {"on_fatal": on_fatal}
    if clock is not None:
        kwargs["clock"] = clock
    channel = ResilientChannel(transport, fast_config(**overrides).channel, **kwargs)
    return channel, transport, on_fatal


def _intents(n: int):
    return [navigation_intent(f"page-{i}") for i in range(n)]


class TestConnect:
    async def test_start_connects(self):
        channel, transport, _ = _channel()
        await channel.start()
        assert await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1) is ConnectionState.CONNECTED
        assert transport.connects == 1
        assert channel.status.retry_count == 0
        await channel.close()

    async def test_state_listener_sees_transitions(self):
        seen = []
        transport = LoopbackTransport()
        channel = ResilientChannel(transport, fast_config().channel, on_state_change=lambda s: seen.append(s.state))
        await channel.start()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1)
        assert seen[:2] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        await channel.close()

    async def test_delivers_and_caches_results(self):
        channel, transport, _ = _channel()
        await channel.start()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        result = make_result(generation=3)
        await channel.send(detection_complete(result))
        assert [m.kind for m in transport.sent] == [MessageKind.DETECTION_COMPLETE]
        cached = channel.last_known()
        assert cached is not None and cached.result == result
        assert not cached.is_stale
        await channel.close()


class TestQueue:
    async def test_queued_messages_flushed_in_order(self):
        channel, transport, _ = _channel()
        first, second, third = _intents(3)
        for message in (first, second, third):
            assert await channel.send(message) is None
        assert channel.queued_messages == (first, second, third)

        await channel.start()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1)
        await wait_until(lambda: not channel.queued_messages)
        fourth = navigation_intent("page-4")
        await channel.send(fourth)

        assert transport.sent == [first, second, third, fourth]
        assert channel.stats.flushed == 3
        await channel.close()

    async def test_overflow_drops_oldest(self):
        channel, _, _ = _channel(queue_capacity=3)
        messages = _intents(4)
        for message in messages:
            await channel.send(message)
        assert channel.queued_messages == tuple(messages[1:])
        assert channel.stats.dropped_overflow == 1

    async def test_expired_messages_never_delivered(self):
        clock = FakeClock()
        channel, transport, _ = _channel(clock=clock, queue_ttl=30.0)
        old, fresh = _intents(2)
        await channel.send(old)
        clock.advance(31.0)
        await channel.send(fresh)
        assert channel.queued_messages == (fresh,)

        clock.advance(29.0)
        await channel.start()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1)
        await wait_until(lambda: not channel.queued_messages)
        assert transport.sent == [fresh]
        assert channel.stats.dropped_expired == 1
        await channel.close()

    async def test_expiry_checked_again_at_flush(self):
        clock = FakeClock()
        channel, transport, _ = _channel(clock=clock, queue_ttl=30.0)
        await channel.send(navigation_intent("page-1"))
        clock.advance(30.0)
        await channel.start()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1)
        await wait_until(lambda: not channel.queued_messages)
        assert transport.sent == []
        assert channel.stats.dropped_expired == 1
        await channel.close()

    async def test_clear_queue(self):
        channel, _, _ = _channel()
        for message in _intents(2):
            await channel.send(message)
        assert channel.clear_queue() == 2
        assert channel.queued_messages == ()

    @given(st.lists(st.integers(min_value=0, max_value=999), max_size=30), st.integers(min_value=1, max_value=10))
    @settings(max_examples=50, deadline=None)
    def test_queue_keeps_newest_in_order(self, ids, capacity):
        async def scenario():
            channel, _, _ = _channel(queue_capacity=capacity)
            messages = [navigation_intent(str(i)) for i in ids]
            for message in messages:
                await channel.send(message)
            return channel.queued_messages, messages

        queued, messages = asyncio.run(scenario())
        assert list(queued) == messages[-capacity:]


class TestRetryBound:
    async def test_gives_up_after_max_retries(self):
        transport = LoopbackTransport()
        transport.go_offline()
        channel, _, on_fatal = _channel(transport, max_retries=3)
        await channel.start()

        assert await channel.wait_for_state(ConnectionState.FAILED, timeout=2) is ConnectionState.FAILED
        assert transport.connects == 3
        on_fatal.assert_awaited_once()
        assert isinstance(on_fatal.await_args.args[0], ChannelFailedError)
        with pytest.raises(ChannelFailedError):
            await channel.send(navigation_intent("page-1"))
        await channel.close()

    async def test_reset_leaves_failed(self):
        transport = LoopbackTransport()
        transport.go_offline()
        channel, _, _ = _channel(transport, max_retries=1)
        await channel.start()
        await channel.wait_for_state(ConnectionState.FAILED, timeout=2)

        transport.go_online()
        channel.reset()
        assert await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1) is ConnectionState.CONNECTED
        assert channel.status.retry_count == 0
        await channel.close()

    async def test_post_while_failed_flushes_after_reset(self):
        transport = LoopbackTransport()
        transport.go_offline()
        channel, _, _ = _channel(transport, max_retries=1)
        await channel.start()
        await channel.wait_for_state(ConnectionState.FAILED, timeout=2)

        message = navigation_intent("page-1")
        channel.post(message)
        assert channel.queued_messages == (message,)

        transport.go_online()
        channel.reset()
        await wait_until(lambda: message in transport.sent)
        assert channel.queued_messages == ()
        await channel.close()

    async def test_post_after_close_rejected(self):
        channel, _, _ = _channel()
        await channel.close()
        with pytest.raises(ChannelFailedError):
            channel.post(navigation_intent("page-1"))

    async def test_recovers_before_bound(self):
        transport = LoopbackTransport()
        transport.go_offline()
        channel, _, on_fatal = _channel(transport, max_retries=50)
        await channel.start()
        await wait_until(lambda: transport.connects >= 2)
        transport.go_online()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=2)
        on_fatal.assert_not_awaited()
        await channel.close()


class TestFailures:
    async def test_permanent_error_fails_channel(self):
        channel, transport, on_fatal = _channel()
        await channel.start()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        transport.invalidate()
        with pytest.raises(PermanentTransportError):
            await channel.send(navigation_intent("page-1"))
        assert channel.state is ConnectionState.FAILED
        assert channel.queued_messages == ()
        on_fatal.assert_awaited_once()
        assert isinstance(on_fatal.await_args.args[0], PermanentTransportError)
        await channel.close()

    async def test_permanent_error_on_connect(self):
        transport = LoopbackTransport()
        transport.invalidate()
        channel, _, on_fatal = _channel(transport)
        await channel.start()
        await channel.wait_for_state(ConnectionState.FAILED, timeout=1)
        assert transport.connects == 1
        on_fatal.assert_awaited_once()
        await channel.close()

    async def test_send_timeout_requeues_at_head(self):
        channel, transport, _ = _channel(send_timeout=0.05)
        await channel.start()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        transport.delay = 0.5
        message = navigation_intent("page-1")
        assert await channel.send(message) is None
        assert channel.queued_messages[0] == message
        assert channel.stats.timeouts == 1
        assert channel.state is not ConnectionState.CONNECTED
        await channel.close()

    async def test_transient_send_error_queues(self):
        channel, transport, _ = _channel()
        await channel.start()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        transport.go_offline()
        message = navigation_intent("page-1")
        await channel.send(message)
        assert message in channel.queued_messages

        transport.go_online()
        await wait_until(lambda: message in transport.sent)
        await channel.close()

    async def test_missed_pings_drop_connection(self):
        channel, transport, _ = _channel(ping_interval=0.02, ping_timeout=0.01, max_missed_pings=3, max_retries=1)
        await channel.start()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        transport.go_offline()
        await channel.wait_for_state(ConnectionState.FAILED, timeout=2)
        assert channel.stats.missed_pings >= 3
        await channel.close()


class TestClose:
    async def test_close_tears_down(self):
        channel, transport, _ = _channel()
        await channel.start()
        await channel.wait_for_state(ConnectionState.CONNECTED, timeout=1)
        await channel.send(detection_complete(make_result()))

        await channel.close()
        assert transport.closed
        assert channel.state is ConnectionState.DISCONNECTED
        assert channel.last_known() is None
        with pytest.raises(ChannelFailedError):
            await channel.send(navigation_intent("page-1"))
