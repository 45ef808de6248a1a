"""Shared test fixtures for the wifiproxy test suite.

Provides fakes for the host network facility, the device command sink
and the upstream frame source, plus temporary config files.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import AsyncIterator

import pytest

from wifiproxy.control.base import CommandSink
from wifiproxy.domain.models import (
    AccessPoint,
    ControlCommand,
    DeviceStatus,
    WifiInterface,
)
from wifiproxy.network.base import NetworkBackend, NetworkManagerUnavailable
from wifiproxy.stream.base import FrameSource, ProxyError


def jpeg(marker: int) -> bytes:
    """A tiny fake JPEG payload (SOI + body + EOI)."""
    return b"\xff\xd8" + bytes([marker]) * 8 + b"\xff\xd9"


# ---------------------------------------------------------------------------
# Network Fakes
# ---------------------------------------------------------------------------


class FakeNetworkBackend(NetworkBackend):
    """In-memory NetworkBackend.

    ``connect_results`` is consumed one entry per connect call: None
    means success, an exception instance is raised. When exhausted,
    connects succeed. A successful connect marks the device connected.
    """

    def __init__(self) -> None:
        self.available = True
        self.interfaces = [
            WifiInterface(name="wlan0", state="connected", is_usb=False),
            WifiInterface(name="wlan1", state="disconnected", is_usb=True),
        ]
        self.statuses: dict[str, DeviceStatus] = {}
        self.connect_results: list[BaseException | None] = []
        self.connect_delay = 0.0
        self.access_points = [
            AccessPoint(ssid="RoboDog-AP", signal=90, security="WPA2"),
            AccessPoint(ssid="Cafe", signal=40, security=""),
        ]
        self.calls: list[tuple] = []

    async def check_available(self) -> None:
        self.calls.append(("check_available",))
        if not self.available:
            raise NetworkManagerUnavailable("NetworkManager is not running")

    async def list_interfaces(self) -> list[WifiInterface]:
        self.calls.append(("list_interfaces",))
        return list(self.interfaces)

    async def device_status(self, interface: str) -> DeviceStatus:
        self.calls.append(("device_status", interface))
        return self.statuses.get(
            interface, DeviceStatus(interface=interface, state_code=30, state="30 (disconnected)")
        )

    async def connect(self, interface: str, ssid: str, password: str | None) -> None:
        self.calls.append(("connect", interface, ssid, password))
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_results:
            result = self.connect_results.pop(0)
            if result is not None:
                raise result
        self.statuses[interface] = DeviceStatus(
            interface=interface,
            state_code=100,
            state="100 (connected)",
            connection=ssid,
            ip_address="192.168.4.2/24",
            gateway="192.168.4.1",
        )

    async def disconnect(self, interface: str) -> None:
        self.calls.append(("disconnect", interface))
        self.statuses.pop(interface, None)

    async def scan(self, interface: str) -> list[AccessPoint]:
        self.calls.append(("scan", interface))
        return list(self.access_points)

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def fake_backend() -> FakeNetworkBackend:
    return FakeNetworkBackend()


# ---------------------------------------------------------------------------
# Control / Stream Fakes
# ---------------------------------------------------------------------------


class RecordingSink(CommandSink):
    """CommandSink that records every command it is asked to send."""

    def __init__(self, delivered: bool = True) -> None:
        self.commands: list[ControlCommand] = []
        self.delivered = delivered

    async def send(self, command: ControlCommand) -> bool:
        self.commands.append(command)
        return self.delivered


class ScriptedFrameSource(FrameSource):
    """FrameSource replaying scripted connections.

    Each entry of *connections* is one upstream connection: a list of
    payloads to yield, or an exception to raise on open. When the script
    is exhausted, further connections fail with ProxyError.
    """

    def __init__(self, connections: list, delay: float = 0.0, hold_open: bool = False) -> None:
        self._connections = list(connections)
        self._delay = delay
        self._hold_open = hold_open
        self.opened = 0
        self.closed = 0

    async def frames(self) -> AsyncIterator[bytes]:
        self.opened += 1
        if not self._connections:
            raise ProxyError("no more scripted connections")
        script = self._connections.pop(0)
        if isinstance(script, BaseException):
            raise script
        try:
            for payload in script:
                await asyncio.sleep(self._delay)
                yield payload
            if self._hold_open:
                await asyncio.Event().wait()
        finally:
            self.closed += 1


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


# ---------------------------------------------------------------------------
# Config Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Path of a not-yet-existing config file in a temp directory."""
    return tmp_path / "wifi-proxy" / "config.yaml"


@pytest.fixture(autouse=True)
def isolated_config_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG_CONFIG_HOME at a temp dir and drop WIFIPROXY_ env vars."""
    home = tmp_path / "xdg"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("WIFIPROXY_"):
            monkeypatch.delenv(key)
    return home
