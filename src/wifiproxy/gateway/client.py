"""HTTP client for the device gateway, pinned to the secondary interface.

Every request leaves the host from the secondary interface's own address
(``httpx.AsyncHTTPTransport(local_address=...)``), so device traffic can
never take the default route onto the primary network. Environment proxy
settings are ignored for the same reason.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from wifiproxy.domain.models import Interface

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class GatewayUnreachable(Exception):
    """Raised when the device gateway cannot be reached."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class GatewayClient:
    """Reaches the device gateway through the secondary interface.

    Example usage::

        async with GatewayClient("192.168.4.1", local_address="192.168.4.2") as gw:
            resp = await gw.request("GET", "/status")
    """

    def __init__(
        self,
        gateway: str,
        local_address: str,
        port: int = 80,
        timeout: float = 3.0,
        command_timeout: float = 1.0,
        read_attempts: int = 3,
        retry_backoff: float = 0.2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._gateway = gateway
        self._local_address = local_address.split("/", 1)[0]
        self._port = port
        self._timeout = timeout
        self._command_timeout = command_timeout
        self._read_attempts = max(1, read_attempts)
        self._retry_backoff = retry_backoff
        if transport is None:
            transport = httpx.AsyncHTTPTransport(local_address=self._local_address, retries=0)
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(timeout),
            trust_env=False,
        )

    @classmethod
    def from_interface(cls, interface: Interface, **kwargs: object) -> GatewayClient:
        """Build a client for the gateway of a connected interface.

        Raises:
            GatewayUnreachable: If the interface has no address or gateway.
        """
        if not interface.gateway or not interface.local_address:
            raise GatewayUnreachable(
                f"Interface {interface.name} has no gateway; is it connected?"
            )
        return cls(interface.gateway, interface.local_address, **kwargs)  # type: ignore[arg-type]

    @property
    def gateway(self) -> str:
        return self._gateway

    @property
    def local_address(self) -> str:
        return self._local_address

    def url(self, path: str, port: int | None = None) -> str:
        """Absolute URL of *path* on the gateway."""
        port = port or self._port
        host = self._gateway if port == 80 else f"{self._gateway}:{port}"
        if not path.startswith("/"):
            path = "/" + path
        return f"http://{host}{path}"

    async def request(
        self,
        method: str,
        path: str,
        body: bytes | None = None,
        params: dict[str, str] | str | None = None,
        headers: dict[str, str] | None = None,
        port: int | None = None,
    ) -> httpx.Response:
        """Send a request to the gateway and return its response.

        Idempotent methods are retried with exponential backoff; others
        are sent once. HTTP error statuses are returned, not raised.

        Raises:
            GatewayUnreachable: If every attempt failed at the network level.
        """
        method = method.upper()
        url = self.url(path, port)
        attempts = self._read_attempts if method in IDEMPOTENT_METHODS else 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._client.request(
                    method, url, content=body, params=params, headers=headers
                )
            except httpx.TransportError as e:
                last_error = e
                logger.debug("%s %s failed (attempt %d/%d): %s", method, url, attempt, attempts, e)
                if attempt < attempts:
                    await asyncio.sleep(self._retry_backoff * 2 ** (attempt - 1))
        raise GatewayUnreachable(f"{method} {url} failed: {last_error}", url=url) from last_error

    async def send_command(self, path: str, params: dict[str, str]) -> bool:
        """Fire-and-forget command delivery with at most one retry.

        Returns whether the gateway acknowledged with a 2xx status. Never
        raises: a stale command is worth less than the next one.
        """
        url = self.url(path)
        for attempt in (1, 2):
            try:
                resp = await self._client.get(url, params=params, timeout=self._command_timeout)
                if resp.is_success:
                    return True
                logger.debug("Gateway answered %d to %s", resp.status_code, params)
                return False
            except httpx.TransportError as e:
                logger.debug("Command %s failed (attempt %d): %s", params, attempt, e)
        return False

    @asynccontextmanager
    async def stream(self, path: str, port: int | None = None) -> AsyncIterator[httpx.Response]:
        """Open a streaming GET; the connection closes when the block exits.

        Raises:
            GatewayUnreachable: If the connection cannot be established.
        """
        url = self.url(path, port)
        request = self._client.build_request("GET", url)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as e:
            raise GatewayUnreachable(f"GET {url} failed: {e}", url=url) from e
        try:
            yield response
        finally:
            await response.aclose()

    async def fetch(self, path_or_url: str) -> bytes:
        """GET a page from the gateway and return its body.

        Absolute URLs are accepted as long as they point at the gateway.
        """
        if path_or_url.startswith(("http://", "https://")):
            parsed = httpx.URL(path_or_url)
            if parsed.host != self._gateway:
                raise GatewayUnreachable(
                    f"{path_or_url} is not on the gateway {self._gateway}", url=path_or_url
                )
            resp = await self.request("GET", parsed.raw_path.decode("ascii"), port=parsed.port)
        else:
            resp = await self.request("GET", path_or_url)
        resp.raise_for_status()
        return resp.content

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()
