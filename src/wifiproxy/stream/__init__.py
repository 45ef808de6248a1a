"""Live media relay for wifiproxy.

Reads the device's camera stream once and fans it out to every
subscribed browser, favouring recency over completeness.

Public API:
    FrameSource -- Abstract base class for upstream sources
    MjpegFrameSource -- MJPEG source read through the gateway
    StreamRelay -- Single-reader fan-out hub
"""

from wifiproxy.stream.base import FrameSource, ProxyError, StreamClosed
from wifiproxy.stream.relay import StreamRelay, Subscription

__all__ = [
    "FrameSource",
    "MjpegFrameSource",
    "ProxyError",
    "StreamClosed",
    "StreamRelay",
    "Subscription",
]


def __getattr__(name: str) -> type:
    """Lazy import for concrete implementations that require external deps."""
    if name == "MjpegFrameSource":
        from wifiproxy.stream.mjpeg import MjpegFrameSource
        return MjpegFrameSource
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
