"""Registry of browser connections attached to the proxy."""

from __future__ import annotations

import logging
import time
import uuid

from wifiproxy.domain.models import ProxySubscriber, SubscriptionKind

logger = logging.getLogger(__name__)


class SubscriberRegistry:
    """Tracks stream and control subscribers and their liveness."""

    def __init__(self) -> None:
        self._subscribers: dict[str, ProxySubscriber] = {}

    def __len__(self) -> int:
        return len(self._subscribers)

    def register(self, kind: SubscriptionKind) -> ProxySubscriber:
        subscriber = ProxySubscriber(id=uuid.uuid4().hex[:12], kind=kind)
        self._subscribers[subscriber.id] = subscriber
        logger.debug("Registered %s subscriber %s", kind.value, subscriber.id)
        return subscriber

    def get(self, subscriber_id: str) -> ProxySubscriber | None:
        return self._subscribers.get(subscriber_id)

    def touch(self, subscriber_id: str) -> bool:
        """Refresh liveness; returns False for unknown ids."""
        subscriber = self._subscribers.get(subscriber_id)
        if subscriber is None:
            return False
        subscriber.touch()
        return True

    def remove(self, subscriber_id: str) -> ProxySubscriber | None:
        return self._subscribers.pop(subscriber_id, None)

    def count(self, kind: SubscriptionKind | None = None) -> int:
        if kind is None:
            return len(self._subscribers)
        return sum(1 for s in self._subscribers.values() if s.kind == kind)

    def idle(self, timeout: float, now: float | None = None) -> list[ProxySubscriber]:
        """Subscribers not seen for at least *timeout* seconds."""
        now = time.monotonic() if now is None else now
        return [s for s in self._subscribers.values() if now - s.last_seen >= timeout]

    def clear(self) -> None:
        self._subscribers.clear()
