"""Abstract base class for upstream media sources.

The relay pulls frames from a :class:`FrameSource` without knowing how
they are produced, enabling the MJPEG gateway source in production and
scripted sources in tests.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Abstract interface for reading encoded frames from the device.

    Each call to :meth:`frames` opens one upstream connection and yields
    frame payloads until that connection ends. The connection is released
    when the iteration stops, including on cancellation.

    Example usage::

        async for payload in source.frames():
            publish(payload)
    """

    @abstractmethod
    def frames(self) -> AsyncIterator[bytes]:
        """Open the upstream connection and yield frame payloads.

        Raises:
            ProxyError: If the upstream closes or answers unexpectedly.
            GatewayUnreachable: If the connection cannot be established.
        """
        ...


class ProxyError(Exception):
    """Raised when the upstream media stream closes unexpectedly."""


class StreamClosed(Exception):
    """Raised to a subscriber whose subscription was closed."""
