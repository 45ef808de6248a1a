"""Tests for the InterfaceController state machine."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conftest import FakeNetworkBackend
from wifiproxy.config.credentials import CredentialStore
from wifiproxy.domain.models import DeviceStatus, InterfaceState, NetworkCredential
from wifiproxy.network.base import (
    AlreadyInProgress,
    AssociationRejected,
    AssociationTimeout,
    InterfaceBusy,
    InterfaceNotFound,
)
from wifiproxy.network.controller import InterfaceController


def make_controller(backend: FakeNetworkBackend, **kwargs) -> InterfaceController:
    kwargs.setdefault("backoff_base", 0)
    return InterfaceController(backend, **kwargs)


class TestResolveInterface:
    @pytest.mark.asyncio
    async def test_explicit_name(self, fake_backend: FakeNetworkBackend) -> None:
        controller = make_controller(fake_backend)
        assert await controller.resolve_interface("wlan0") == "wlan0"

    @pytest.mark.asyncio
    async def test_explicit_name_must_exist(self, fake_backend: FakeNetworkBackend) -> None:
        controller = make_controller(fake_backend)
        with pytest.raises(InterfaceNotFound):
            await controller.resolve_interface("wlan7")

    @pytest.mark.asyncio
    async def test_configured_default(self, fake_backend: FakeNetworkBackend) -> None:
        controller = make_controller(fake_backend, default_interface="wlan0")
        assert await controller.resolve_interface() == "wlan0"

    @pytest.mark.asyncio
    async def test_first_usb_adapter(self, fake_backend: FakeNetworkBackend) -> None:
        controller = make_controller(fake_backend)
        assert await controller.resolve_interface() == "wlan1"

    @pytest.mark.asyncio
    async def test_no_usb_adapter(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.interfaces = fake_backend.interfaces[:1]
        controller = make_controller(fake_backend)
        with pytest.raises(InterfaceNotFound):
            await controller.resolve_interface()


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_success(self, fake_backend: FakeNetworkBackend) -> None:
        controller = make_controller(fake_backend)
        iface = await controller.connect("RoboDog-AP", "secret", interface="wlan1")
        assert iface.state == InterfaceState.CONNECTED
        assert iface.ssid == "RoboDog-AP"
        assert iface.gateway == "192.168.4.1"
        assert iface.local_address == "192.168.4.2"
        assert ("connect", "wlan1", "RoboDog-AP", "secret") in fake_backend.calls

    @pytest.mark.asyncio
    async def test_already_connected_is_noop(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.statuses["wlan1"] = DeviceStatus(
            interface="wlan1", state_code=100, connection="RoboDog-AP",
            ip_address="192.168.4.2/24", gateway="192.168.4.1",
        )
        controller = make_controller(fake_backend)
        iface = await controller.connect("RoboDog-AP", "secret", interface="wlan1")
        assert iface.is_connected
        assert "connect" not in fake_backend.call_names()

    @pytest.mark.asyncio
    async def test_already_connected_still_saves(
        self, fake_backend: FakeNetworkBackend, config_file: Path
    ) -> None:
        fake_backend.statuses["wlan1"] = DeviceStatus(
            interface="wlan1", state_code=100, connection="RoboDog-AP",
            ip_address="192.168.4.2/24", gateway="192.168.4.1",
        )
        store = CredentialStore(config_file)
        controller = make_controller(fake_backend, credentials=store)
        await controller.connect("RoboDog-AP", "secret", interface="wlan1", save=True)
        assert "connect" not in fake_backend.call_names()
        assert store.lookup("RoboDog-AP", interface="wlan1") == NetworkCredential(
            ssid="RoboDog-AP", password="secret", interface="wlan1"
        )

    @pytest.mark.asyncio
    async def test_rejection_sets_failed(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.connect_results = [AssociationRejected("bad password", interface="wlan1")]
        controller = make_controller(fake_backend)
        with pytest.raises(AssociationRejected):
            await controller.connect("RoboDog-AP", "wrong", interface="wlan1")
        status = controller.status("wlan1")
        assert status.state == InterfaceState.FAILED
        assert "bad password" in status.last_error
        # rejection is not retried
        assert fake_backend.call_names().count("connect") == 1

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.connect_results = [AssociationTimeout("slow"), None]
        controller = make_controller(fake_backend, connect_attempts=3)
        iface = await controller.connect("RoboDog-AP", "secret", interface="wlan1")
        assert iface.is_connected
        assert fake_backend.call_names().count("connect") == 2

    @pytest.mark.asyncio
    async def test_association_timeout_bound(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.connect_delay = 1.0
        controller = make_controller(fake_backend, connect_attempts=2, association_timeout=0.01)
        with pytest.raises(AssociationTimeout):
            await controller.connect("RoboDog-AP", "secret", interface="wlan1")
        assert controller.status("wlan1").state == InterfaceState.FAILED
        assert fake_backend.call_names().count("connect") == 2

    @pytest.mark.asyncio
    async def test_failed_can_reconnect(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.connect_results = [AssociationRejected("no")]
        controller = make_controller(fake_backend)
        with pytest.raises(AssociationRejected):
            await controller.connect("RoboDog-AP", "x", interface="wlan1")
        iface = await controller.connect("RoboDog-AP", "secret", interface="wlan1")
        assert iface.is_connected
        assert iface.last_error is None

    @pytest.mark.asyncio
    async def test_concurrent_connect_rejected(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.connect_delay = 0.05
        controller = make_controller(fake_backend)
        first = asyncio.create_task(controller.connect("RoboDog-AP", "secret", interface="wlan1"))
        await asyncio.sleep(0)
        with pytest.raises(AlreadyInProgress):
            await controller.connect("Other", "x", interface="wlan1")
        assert (await first).is_connected
        assert fake_backend.call_names().count("connect") == 1

    @pytest.mark.asyncio
    async def test_different_interfaces_do_not_block(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.connect_delay = 0.05
        controller = make_controller(fake_backend)
        a, b = await asyncio.gather(
            controller.connect("A", "x", interface="wlan0"),
            controller.connect("B", "y", interface="wlan1"),
        )
        assert a.ssid == "A" and b.ssid == "B"

    @pytest.mark.asyncio
    async def test_saved_password_used(self, fake_backend: FakeNetworkBackend, config_file: Path) -> None:
        store = CredentialStore(config_file)
        store.save(NetworkCredential(ssid="RoboDog-AP", password="saved", interface="wlan1"))
        controller = make_controller(fake_backend, credentials=store)
        await controller.connect("RoboDog-AP", interface="wlan1")
        assert ("connect", "wlan1", "RoboDog-AP", "saved") in fake_backend.calls

    @pytest.mark.asyncio
    async def test_explicit_password_wins(self, fake_backend: FakeNetworkBackend, config_file: Path) -> None:
        store = CredentialStore(config_file)
        store.save(NetworkCredential(ssid="RoboDog-AP", password="saved"))
        controller = make_controller(fake_backend, credentials=store)
        await controller.connect("RoboDog-AP", "typed", interface="wlan1")
        assert ("connect", "wlan1", "RoboDog-AP", "typed") in fake_backend.calls

    @pytest.mark.asyncio
    async def test_save_after_success_only(self, fake_backend: FakeNetworkBackend, config_file: Path) -> None:
        store = CredentialStore(config_file)
        fake_backend.connect_results = [AssociationRejected("no")]
        controller = make_controller(fake_backend, credentials=store)
        with pytest.raises(AssociationRejected):
            await controller.connect("RoboDog-AP", "bad", interface="wlan1", save=True)
        assert store.load() == []
        await controller.connect("RoboDog-AP", "good", interface="wlan1", save=True)
        assert store.lookup("RoboDog-AP", interface="wlan1").password == "good"


class TestDisconnectStatusScan:
    @pytest.mark.asyncio
    async def test_disconnect_connected(self, fake_backend: FakeNetworkBackend) -> None:
        controller = make_controller(fake_backend)
        await controller.connect("RoboDog-AP", "secret", interface="wlan1")
        iface = await controller.disconnect("wlan1")
        assert iface.state == InterfaceState.DISCONNECTED
        assert iface.gateway is None
        assert "disconnect" in fake_backend.call_names()

    @pytest.mark.asyncio
    async def test_disconnect_when_disconnected_is_noop(self, fake_backend: FakeNetworkBackend) -> None:
        controller = make_controller(fake_backend)
        iface = await controller.disconnect("wlan1")
        assert iface.state == InterfaceState.DISCONNECTED
        assert "disconnect" not in fake_backend.call_names()

    @pytest.mark.asyncio
    async def test_status_has_no_side_effects(self, fake_backend: FakeNetworkBackend) -> None:
        controller = make_controller(fake_backend)
        snapshot = controller.status("wlan1")
        assert snapshot.state == InterfaceState.DISCONNECTED
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_status_returns_copy(self, fake_backend: FakeNetworkBackend) -> None:
        controller = make_controller(fake_backend)
        snapshot = controller.status("wlan1")
        snapshot.state = InterfaceState.CONNECTED
        assert controller.status("wlan1").state == InterfaceState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_refresh_picks_up_host_state(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.statuses["wlan1"] = DeviceStatus(
            interface="wlan1", state_code=100, connection="RoboDog-AP",
            ip_address="192.168.4.2/24", gateway="192.168.4.1",
        )
        controller = make_controller(fake_backend)
        iface = await controller.refresh("wlan1")
        assert iface.is_connected
        assert iface.ssid == "RoboDog-AP"

    @pytest.mark.asyncio
    async def test_refresh_keeps_failed(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.connect_results = [AssociationRejected("no")]
        controller = make_controller(fake_backend)
        with pytest.raises(AssociationRejected):
            await controller.connect("RoboDog-AP", "x", interface="wlan1")
        assert (await controller.refresh("wlan1")).state == InterfaceState.FAILED

    @pytest.mark.asyncio
    async def test_scan_does_not_change_state(self, fake_backend: FakeNetworkBackend) -> None:
        controller = make_controller(fake_backend)
        networks = await controller.scan("wlan1")
        assert networks[0].ssid == "RoboDog-AP"
        assert controller.status("wlan1").state == InterfaceState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_scan_during_connect_is_busy(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.connect_delay = 0.05
        controller = make_controller(fake_backend)
        task = asyncio.create_task(controller.connect("RoboDog-AP", "secret", interface="wlan1"))
        await asyncio.sleep(0)
        with pytest.raises(InterfaceBusy):
            await controller.scan("wlan1")
        await task

    @pytest.mark.asyncio
    async def test_status_during_connect_is_connecting(self, fake_backend: FakeNetworkBackend) -> None:
        fake_backend.connect_delay = 0.05
        controller = make_controller(fake_backend)
        task = asyncio.create_task(controller.connect("RoboDog-AP", "secret", interface="wlan1"))
        await asyncio.sleep(0.01)
        assert controller.status("wlan1").state == InterfaceState.CONNECTING
        await task
