"""MJPEG upstream source reading the device camera through the gateway.

ESP32-CAM style firmware serves ``multipart/x-mixed-replace`` on port 81.
Frames are cut on the JPEG start/end-of-image markers, which works for
any boundary string the firmware picks.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx

from wifiproxy.gateway.client import GatewayClient
from wifiproxy.stream.base import FrameSource, ProxyError

logger = logging.getLogger(__name__)

JPEG_SOI = b"\xff\xd8"
JPEG_EOI = b"\xff\xd9"

BOUNDARY = "frame"
MEDIA_TYPE = f"multipart/x-mixed-replace; boundary={BOUNDARY}"


async def iter_jpeg_frames(
    chunks: AsyncIterator[bytes],
    max_frame_bytes: int = 2 * 1024 * 1024,
) -> AsyncIterator[bytes]:
    """Reassemble complete JPEG images from an arbitrary byte stream.

    Bytes outside SOI..EOI (multipart headers, boundaries) are discarded.
    A partial frame growing past *max_frame_bytes* is dropped.
    """
    buffer = bytearray()
    async for chunk in chunks:
        buffer += chunk
        while True:
            start = buffer.find(JPEG_SOI)
            if start < 0:
                # a trailing 0xFF may be the first half of the next SOI
                buffer = bytearray(buffer[-1:]) if buffer.endswith(b"\xff") else bytearray()
                break
            end = buffer.find(JPEG_EOI, start + 2)
            if end < 0:
                if start:
                    del buffer[:start]
                if len(buffer) > max_frame_bytes:
                    logger.warning("Dropping oversized partial frame (%d bytes)", len(buffer))
                    buffer.clear()
                break
            yield bytes(buffer[start : end + 2])
            del buffer[: end + 2]


def encode_part(payload: bytes, sequence: int) -> bytes:
    """Encode one frame as a part of the browser-facing multipart stream."""
    header = (
        f"--{BOUNDARY}\r\n"
        "Content-Type: image/jpeg\r\n"
        f"Content-Length: {len(payload)}\r\n"
        f"X-Sequence: {sequence}\r\n"
        "\r\n"
    ).encode("ascii")
    return header + payload + b"\r\n"


class MjpegFrameSource(FrameSource):
    """Reads the device's MJPEG stream through a pinned GatewayClient."""

    def __init__(
        self,
        client: GatewayClient,
        path: str = "/stream",
        port: int = 81,
        max_frame_bytes: int = 2 * 1024 * 1024,
    ) -> None:
        self._client = client
        self._path = path
        self._port = port
        self._max_frame_bytes = max_frame_bytes

    async def frames(self) -> AsyncIterator[bytes]:
        """Open the camera stream and yield JPEG payloads."""
        url = self._client.url(self._path, self._port)
        try:
            async with self._client.stream(self._path, port=self._port) as response:
                if response.status_code != 200:
                    raise ProxyError(f"{url} answered {response.status_code}")
                logger.info("Upstream stream opened: %s", url)
                async for frame in iter_jpeg_frames(response.aiter_bytes(), self._max_frame_bytes):
                    yield frame
        except httpx.HTTPError as e:
            raise ProxyError(f"Upstream stream {url} closed: {e}") from e
