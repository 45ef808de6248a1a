"""Tests for the StreamRelay fan-out hub."""

from __future__ import annotations

import asyncio

import pytest

from conftest import ScriptedFrameSource, jpeg
from wifiproxy.domain.models import StreamFrame
from wifiproxy.gateway.client import GatewayUnreachable
from wifiproxy.stream.base import FrameSource, StreamClosed
from wifiproxy.stream.relay import StreamRelay, Subscription


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout)


async def read_until(subscription: Subscription, last: int) -> list[int]:
    sequences: list[int] = []
    while not sequences or sequences[-1] < last:
        sequences.append((await subscription.get()).sequence)
    return sequences


class SlowClosingSource(FrameSource):
    """Endless source whose connections take a while to shut down."""

    def __init__(self, close_delay: float = 0.05) -> None:
        self._close_delay = close_delay
        self.open_connections = 0
        self.max_open_connections = 0

    async def frames(self):
        self.open_connections += 1
        self.max_open_connections = max(self.max_open_connections, self.open_connections)
        try:
            marker = 0
            while True:
                await asyncio.sleep(0.001)
                marker = (marker + 1) % 200
                yield jpeg(marker)
        finally:
            await asyncio.sleep(self._close_delay)
            self.open_connections -= 1


class TestSubscription:
    @pytest.mark.asyncio
    async def test_drop_oldest(self) -> None:
        sub = Subscription("a", capacity=2)
        for seq in (1, 2, 3):
            sub.push(StreamFrame(sequence=seq, payload=b"x"))
        assert sub.dropped == 1
        assert (await sub.get()).sequence == 2
        assert (await sub.get()).sequence == 3

    @pytest.mark.asyncio
    async def test_closed_iteration_stops(self) -> None:
        sub = Subscription("a")
        sub.close()
        assert [f async for f in sub] == []
        with pytest.raises(StreamClosed):
            await sub.get()


class TestStreamRelay:
    @pytest.mark.asyncio
    async def test_fan_out_to_many_subscribers(self) -> None:
        source = ScriptedFrameSource([[jpeg(i) for i in range(20)]], delay=0.001, hold_open=True)
        relay = StreamRelay(source, buffer_size=3)
        subs = [relay.subscribe(f"s{i}") for i in range(5)]
        results = await asyncio.wait_for(
            asyncio.gather(*(read_until(s, 20) for s in subs)), timeout=5
        )
        for sequences in results:
            assert sequences == sorted(set(sequences))
            assert sequences[-1] == 20
        assert relay.frames_read == 20
        assert relay.upstream_connects == 1
        assert source.opened == 1
        await relay.close()

    @pytest.mark.asyncio
    async def test_slow_subscriber_only_loses_its_own_frames(self) -> None:
        source = ScriptedFrameSource([[jpeg(i) for i in range(10)]], delay=0.001, hold_open=True)
        relay = StreamRelay(source, buffer_size=3)
        fast = relay.subscribe("fast")
        slow = relay.subscribe("slow")
        fast_sequences = await asyncio.wait_for(read_until(fast, 10), timeout=5)
        await wait_until(lambda: relay.frames_read == 10)

        assert fast_sequences[-1] == 10
        assert slow.pending == 3
        assert slow.dropped == 7
        assert [(await slow.get()).sequence for _ in range(3)] == [8, 9, 10]
        # the upstream was read once for both subscribers
        assert relay.frames_read == 10
        await relay.close()

    @pytest.mark.asyncio
    async def test_last_unsubscribe_closes_upstream(self) -> None:
        source = ScriptedFrameSource([[jpeg(1)]], hold_open=True)
        relay = StreamRelay(source)
        first = relay.subscribe("a")
        relay.subscribe("b")
        await first.get()

        relay.unsubscribe("a")
        await asyncio.sleep(0.01)
        assert relay.upstream_active

        relay.unsubscribe("b")
        await wait_until(lambda: source.closed == 1)
        assert not relay.upstream_active
        assert relay.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_is_noop(self) -> None:
        relay = StreamRelay(ScriptedFrameSource([]))
        relay.unsubscribe("nobody")
        assert relay.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_duplicate_subscriber_rejected(self) -> None:
        relay = StreamRelay(ScriptedFrameSource([[jpeg(1)]], hold_open=True))
        relay.subscribe("a")
        with pytest.raises(ValueError):
            relay.subscribe("a")
        await relay.close()

    @pytest.mark.asyncio
    async def test_reconnects_after_upstream_end(self) -> None:
        source = ScriptedFrameSource([[jpeg(1)], [jpeg(2)]])
        relay = StreamRelay(source, reconnect_attempts=2, reconnect_backoff=0)
        sub = relay.subscribe("a")
        assert (await sub.get()).sequence == 1
        assert (await sub.get()).sequence == 2
        with pytest.raises(GatewayUnreachable):
            await asyncio.wait_for(sub.get(), timeout=2)
        assert relay.upstream_connects == 3
        assert relay.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_unreachable_gateway_surfaces_to_subscribers(self) -> None:
        source = ScriptedFrameSource([GatewayUnreachable("no route"), GatewayUnreachable("no route")])
        relay = StreamRelay(source, reconnect_attempts=2, reconnect_backoff=0)
        subs = [relay.subscribe("a"), relay.subscribe("b")]
        for sub in subs:
            with pytest.raises(GatewayUnreachable):
                await asyncio.wait_for(sub.get(), timeout=2)
        assert source.opened == 2

    @pytest.mark.asyncio
    async def test_resubscribe_after_failure_restarts_reader(self) -> None:
        source = ScriptedFrameSource([GatewayUnreachable("down"), [jpeg(5)]])
        relay = StreamRelay(source, reconnect_attempts=1, reconnect_backoff=0)
        with pytest.raises(GatewayUnreachable):
            await asyncio.wait_for(relay.subscribe("a").get(), timeout=2)
        await wait_until(lambda: not relay.upstream_active)
        sub = relay.subscribe("b")
        assert (await asyncio.wait_for(sub.get(), timeout=2)).payload == jpeg(5)
        await relay.close()

    @pytest.mark.asyncio
    async def test_close_ends_subscriptions(self) -> None:
        source = ScriptedFrameSource([[jpeg(1)]], hold_open=True)
        relay = StreamRelay(source)
        sub = relay.subscribe("a")
        await sub.get()
        await relay.close()
        with pytest.raises(StreamClosed):
            await sub.get()
        assert source.closed == 1

    @pytest.mark.asyncio
    async def test_leaving_subscriber_does_not_disturb_the_rest(self) -> None:
        source = ScriptedFrameSource([[jpeg(i) for i in range(20)]], delay=0.002, hold_open=True)
        relay = StreamRelay(source, buffer_size=3)
        subs = [relay.subscribe(f"s{i}") for i in range(5)]

        async def leave_after(subscription: Subscription, frames: int) -> None:
            for _ in range(frames):
                await subscription.get()
            relay.unsubscribe(subscription.subscriber_id)

        results = await asyncio.wait_for(
            asyncio.gather(leave_after(subs[0], 5), *(read_until(s, 20) for s in subs[1:])),
            timeout=5,
        )
        for sequences in results[1:]:
            assert sequences == list(range(1, 21))
        assert all(s.dropped == 0 for s in subs[1:])
        assert relay.subscriber_count == 4
        assert relay.upstream_connects == 1
        await relay.close()

    @pytest.mark.asyncio
    async def test_unexpected_source_error_fails_subscribers(self) -> None:
        source = ScriptedFrameSource([RuntimeError("decoder crashed")])
        relay = StreamRelay(source, reconnect_attempts=3, reconnect_backoff=0)
        sub = relay.subscribe("a")
        with pytest.raises(GatewayUnreachable):
            await asyncio.wait_for(sub.get(), timeout=2)
        assert source.opened == 1
        assert relay.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_resubscribe_waits_for_previous_upstream(self) -> None:
        source = SlowClosingSource(close_delay=0.05)
        relay = StreamRelay(source)
        await asyncio.wait_for(relay.subscribe("a").get(), timeout=2)
        relay.unsubscribe("a")
        sub = relay.subscribe("b")
        await asyncio.wait_for(sub.get(), timeout=2)
        assert source.max_open_connections == 1
        assert relay.upstream_connects == 2
        await relay.close()
        assert source.open_connections == 0
