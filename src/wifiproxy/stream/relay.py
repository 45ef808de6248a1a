"""Fan-out hub sharing one upstream media stream among browser clients.

One reader task pulls frames from the upstream source and pushes each
frame into every subscriber's bounded buffer. A full buffer drops its
oldest frame, so a slow browser only ever loses frames of its own and
never slows the reader or the other subscribers.

The reader starts with the first subscriber and is cancelled when the
last one leaves; an upstream that fails while subscribers remain is
reopened with bounded retries before the error reaches the subscribers.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime

from wifiproxy.domain.models import StreamFrame
from wifiproxy.gateway.client import GatewayUnreachable
from wifiproxy.stream.base import FrameSource, ProxyError, StreamClosed

logger = logging.getLogger(__name__)


class Subscription:
    """One subscriber's bounded, drop-oldest frame buffer."""

    def __init__(self, subscriber_id: str, capacity: int = 3) -> None:
        self.subscriber_id = subscriber_id
        self._frames: deque[StreamFrame] = deque(maxlen=max(1, capacity))
        self._ready = asyncio.Event()
        self._error: Exception | None = None
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed or self._error is not None

    @property
    def pending(self) -> int:
        return len(self._frames)

    def push(self, frame: StreamFrame) -> None:
        """Buffer *frame*, evicting the oldest one when full. Never blocks."""
        if len(self._frames) == self._frames.maxlen:
            self.dropped += 1
        self._frames.append(frame)
        self._ready.set()

    def fail(self, error: Exception) -> None:
        self._error = error
        self._ready.set()

    def close(self) -> None:
        self._closed = True
        self._ready.set()

    async def get(self) -> StreamFrame:
        """Wait for the next buffered frame.

        Raises:
            GatewayUnreachable: If the relay gave up on the upstream.
            StreamClosed: If the subscription was closed.
        """
        while not self._frames:
            if self._error is not None:
                raise self._error
            if self._closed:
                raise StreamClosed(f"Subscription {self.subscriber_id} closed")
            self._ready.clear()
            await self._ready.wait()
        return self._frames.popleft()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> StreamFrame:
        try:
            return await self.get()
        except StreamClosed:
            raise StopAsyncIteration from None


class StreamRelay:
    """Shares a single upstream connection among any number of subscribers.

    Example usage::

        relay = StreamRelay(MjpegFrameSource(client))
        subscription = relay.subscribe("a1b2c3")
        try:
            async for frame in subscription:
                send(frame.payload)
        finally:
            relay.unsubscribe("a1b2c3")
    """

    def __init__(
        self,
        source: FrameSource,
        buffer_size: int = 3,
        reconnect_attempts: int = 3,
        reconnect_backoff: float = 0.5,
    ) -> None:
        self._source = source
        self._buffer_size = buffer_size
        self._reconnect_attempts = max(1, reconnect_attempts)
        self._reconnect_backoff = reconnect_backoff
        self._subscribers: dict[str, Subscription] = {}
        self._reader: asyncio.Task[None] | None = None
        self._closing: asyncio.Task[None] | None = None
        self._sequence = 0
        self._frames_read = 0
        self._connects = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def upstream_active(self) -> bool:
        return self._reader is not None and not self._reader.done()

    @property
    def frames_read(self) -> int:
        """Frames read from the upstream since the relay was created."""
        return self._frames_read

    @property
    def upstream_connects(self) -> int:
        """How many times an upstream connection was opened."""
        return self._connects

    def subscribe(self, subscriber_id: str) -> Subscription:
        """Register a subscriber, starting the upstream reader if needed."""
        if subscriber_id in self._subscribers:
            raise ValueError(f"Subscriber {subscriber_id} is already registered")
        subscription = Subscription(subscriber_id, self._buffer_size)
        self._subscribers[subscriber_id] = subscription
        if not self.upstream_active:
            self._reader = asyncio.create_task(self._read_upstream(), name="stream-relay-reader")
        logger.info("Stream subscriber %s joined (%d total)", subscriber_id, len(self._subscribers))
        return subscription

    def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber; the last one out closes the upstream.

        Synchronous so it can run from cleanup code of a cancelled response.
        """
        subscription = self._subscribers.pop(subscriber_id, None)
        if subscription is None:
            return
        subscription.close()
        logger.info(
            "Stream subscriber %s left (%d remaining, %d frames dropped)",
            subscriber_id, len(self._subscribers), subscription.dropped,
        )
        if not self._subscribers and self._reader is not None:
            self._reader.cancel()
            self._closing, self._reader = self._reader, None
            logger.info("Last subscriber gone, closing upstream stream")

    async def close(self) -> None:
        """Close every subscription and the upstream connection."""
        for subscription in self._subscribers.values():
            subscription.close()
        self._subscribers.clear()
        tasks = [t for t in (self._reader, self._closing) if t is not None]
        self._reader = self._closing = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

    def _publish(self, payload: bytes) -> None:
        self._sequence += 1
        self._frames_read += 1
        frame = StreamFrame(sequence=self._sequence, payload=payload, captured_at=datetime.now())
        for subscription in list(self._subscribers.values()):
            subscription.push(frame)

    async def _read_upstream(self) -> None:
        previous, self._closing = self._closing, None
        if previous is not None:
            # the cancelled reader may still be closing its connection
            await asyncio.wait([previous])
        failures = 0
        while self._subscribers:
            try:
                self._connects += 1
                async for payload in self._source.frames():
                    failures = 0
                    self._publish(payload)
                raise ProxyError("Upstream stream ended")
            except (ProxyError, GatewayUnreachable) as e:
                failures += 1
                if failures >= self._reconnect_attempts:
                    logger.error("Upstream stream unavailable after %d attempts: %s", failures, e)
                    self._fail_all(
                        GatewayUnreachable(f"Stream unavailable after {failures} attempts: {e}")
                    )
                    return
                delay = self._reconnect_backoff * 2 ** (failures - 1)
                logger.warning(
                    "Upstream stream lost (%s); reconnecting in %.1fs (%d/%d)",
                    e, delay, failures, self._reconnect_attempts,
                )
                await asyncio.sleep(delay)
            except Exception as e:
                logger.exception("Upstream reader failed unexpectedly")
                self._fail_all(GatewayUnreachable(f"Stream failed: {e}"))
                return

    def _fail_all(self, error: Exception) -> None:
        for subscription in self._subscribers.values():
            subscription.fail(error)
        self._subscribers.clear()
