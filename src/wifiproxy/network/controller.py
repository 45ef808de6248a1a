"""Lifecycle of the secondary wireless association.

The controller owns one :class:`Interface` value per adapter name and
serializes every transition on that adapter with its own lock, so two
callers can never race the host's association machinery. Different
adapters never wait on each other.

State machine::

    Disconnected --connect--> Connecting --success--> Connected
    Connecting --timeout/reject--> Failed
    Connected --disconnect--> Disconnected
    Failed --connect--> Connecting
"""

from __future__ import annotations

import asyncio
import logging

from wifiproxy.config.credentials import CredentialStore
from wifiproxy.domain.models import (
    AccessPoint,
    Interface,
    InterfaceState,
    NetworkCredential,
    WifiInterface,
)
from wifiproxy.network.base import (
    AlreadyInProgress,
    AssociationTimeout,
    InterfaceBusy,
    InterfaceError,
    InterfaceNotFound,
    NetworkBackend,
)

logger = logging.getLogger(__name__)


class InterfaceController:
    """Connects, disconnects, inspects and scans wireless interfaces.

    Example usage::

        controller = InterfaceController(NmcliBackend(), credentials=CredentialStore())
        iface = await controller.connect("RoboDog-AP", "secret", interface="wlan1")
        print(iface.gateway)
    """

    def __init__(
        self,
        backend: NetworkBackend,
        credentials: CredentialStore | None = None,
        connect_attempts: int = 3,
        backoff_base: float = 1.0,
        association_timeout: float = 45.0,
        default_interface: str | None = None,
        interfaces: list[str] | None = None,
    ) -> None:
        self._backend = backend
        self._credentials = credentials
        self._connect_attempts = max(1, connect_attempts)
        self._backoff_base = backoff_base
        self._association_timeout = association_timeout
        self._default_interface = default_interface
        self._interfaces: dict[str, Interface] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        for name in interfaces or []:
            self._track(name)

    # -------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------

    async def check_available(self) -> None:
        """Raises NetworkManagerUnavailable if the host facility is down."""
        await self._backend.check_available()

    async def list_interfaces(self) -> list[WifiInterface]:
        return await self._backend.list_interfaces()

    async def resolve_interface(self, name: str | None = None) -> str:
        """Pick the interface to operate on.

        An explicit name must exist. Without one, the configured default
        is used, then the first USB wireless adapter.

        Raises:
            InterfaceNotFound: If nothing suitable is present.
        """
        available = await self._backend.list_interfaces()
        names = {iface.name for iface in available}
        wanted = name or self._default_interface
        if wanted:
            if wanted not in names:
                raise InterfaceNotFound(f"Interface '{wanted}' not found", interface=wanted)
            return wanted
        for iface in available:
            if iface.is_usb:
                logger.info("Auto-detected USB WiFi interface %s", iface.name)
                return iface.name
        raise InterfaceNotFound("No USB WiFi interface found")

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------

    def status(self, interface: str) -> Interface:
        """Return a snapshot of *interface* without touching the host."""
        return self._track(interface).model_copy()

    async def refresh(self, interface: str) -> Interface:
        """Sync the snapshot with the host's view of the device.

        Skipped while a transition holds the interface; the in-flight
        operation owns the state then.
        """
        current = self._track(interface)
        lock = self._locks[interface]
        if lock.locked():
            return current.model_copy()
        async with lock:
            await self._sync_from_host(interface)
            return self._interfaces[interface].model_copy()

    async def connect(
        self,
        ssid: str,
        password: str | None = None,
        interface: str = "",
        save: bool = False,
    ) -> Interface:
        """Associate *interface* with *ssid* and wait for the outcome.

        Args:
            ssid: Access point to join.
            password: Explicit password; takes precedence over saved ones.
            interface: Adapter name.
            save: Persist the credential after a successful association.

        Returns:
            Snapshot in state ``Connected``.

        Raises:
            AlreadyInProgress: If another transition holds the interface.
            AssociationRejected, AssociationTimeout, InterfaceNotFound,
            NetworkManagerUnavailable: On failure; state is ``Failed``.
        """
        if not interface:
            raise InterfaceNotFound("No interface given", interface=interface)
        self._track(interface)
        lock = self._locks[interface]
        if lock.locked():
            raise AlreadyInProgress(
                f"A transition is already in progress on {interface}", interface=interface
            )

        async with lock:
            if password is None:
                password = self._saved_password(ssid, interface)

            before = await self._backend.device_status(interface)
            if before.is_connected and before.connection == ssid:
                logger.info("%s is already connected to '%s'", interface, ssid)
                self._set(
                    interface,
                    state=InterfaceState.CONNECTED,
                    ssid=ssid,
                    ip_address=before.ip_address,
                    gateway=before.gateway,
                    last_error=None,
                )
                if save:
                    self._remember(ssid, password, interface)
                return self.status(interface)

            self._set(interface, state=InterfaceState.CONNECTING, ssid=ssid, last_error=None)
            logger.info("Connecting %s to '%s'", interface, ssid)
            try:
                await self._associate(interface, ssid, password)
                after = await self._backend.device_status(interface)
            except InterfaceError as e:
                self._set(
                    interface,
                    state=InterfaceState.FAILED,
                    ip_address=None,
                    gateway=None,
                    last_error=str(e),
                )
                logger.error("Connecting %s to '%s' failed: %s", interface, ssid, e)
                raise

            self._set(
                interface,
                state=InterfaceState.CONNECTED,
                ssid=ssid,
                ip_address=after.ip_address,
                gateway=after.gateway,
                last_error=None,
            )
            logger.info(
                "%s connected to '%s' (ip=%s, gateway=%s)",
                interface, ssid, after.ip_address, after.gateway,
            )

            if save:
                self._remember(ssid, password, interface)
            return self.status(interface)

    async def disconnect(self, interface: str) -> Interface:
        """Tear down the association; a no-op when already disconnected."""
        self._track(interface)
        async with self._locks[interface]:
            device = await self._backend.device_status(interface)
            if device.is_connected or device.is_activating:
                await self._backend.disconnect(interface)
                logger.info("Disconnected %s", interface)
            else:
                logger.debug("%s already disconnected", interface)
            self._set(
                interface,
                state=InterfaceState.DISCONNECTED,
                ssid=None,
                ip_address=None,
                gateway=None,
                last_error=None,
            )
            return self.status(interface)

    async def scan(self, interface: str) -> list[AccessPoint]:
        """List visible access points without changing interface state.

        Raises:
            InterfaceBusy: If the interface is mid-transition.
        """
        self._track(interface)
        lock = self._locks[interface]
        if lock.locked():
            raise InterfaceBusy(f"{interface} is busy; try again shortly", interface=interface)
        async with lock:
            return await self._backend.scan(interface)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    async def _associate(self, interface: str, ssid: str, password: str | None) -> None:
        """Run association attempts with exponential backoff on timeouts."""
        for attempt in range(1, self._connect_attempts + 1):
            try:
                await asyncio.wait_for(
                    self._backend.connect(interface, ssid, password),
                    self._association_timeout,
                )
                return
            except asyncio.TimeoutError:
                error = AssociationTimeout(
                    f"Association with '{ssid}' timed out after {self._association_timeout:.0f}s",
                    interface=interface,
                )
            except AssociationTimeout as e:
                error = e
            if attempt == self._connect_attempts:
                raise error
            delay = self._backoff_base * 2 ** (attempt - 1)
            logger.warning(
                "Attempt %d/%d to join '%s' timed out; retrying in %.1fs",
                attempt, self._connect_attempts, ssid, delay,
            )
            await asyncio.sleep(delay)

    async def _sync_from_host(self, interface: str) -> None:
        device = await self._backend.device_status(interface)
        current = self._interfaces[interface]
        if device.is_connected:
            self._set(
                interface,
                state=InterfaceState.CONNECTED,
                ssid=device.connection,
                ip_address=device.ip_address,
                gateway=device.gateway,
                last_error=None,
            )
        elif device.is_activating:
            self._set(interface, state=InterfaceState.CONNECTING, ssid=device.connection)
        elif current.state != InterfaceState.FAILED:
            self._set(
                interface,
                state=InterfaceState.DISCONNECTED,
                ssid=None,
                ip_address=None,
                gateway=None,
            )

    def _remember(self, ssid: str, password: str | None, interface: str) -> None:
        if self._credentials is not None:
            self._credentials.save(
                NetworkCredential(ssid=ssid, password=password or "", interface=interface)
            )

    def _saved_password(self, ssid: str, interface: str) -> str | None:
        if self._credentials is None:
            return None
        cred = self._credentials.lookup(ssid, interface=interface)
        if cred is None:
            logger.info("No saved credentials for '%s'; connecting without a password", ssid)
            return None
        logger.info("Using saved password for '%s'", ssid)
        return cred.password or None

    def _track(self, interface: str) -> Interface:
        if interface not in self._interfaces:
            self._interfaces[interface] = Interface(name=interface)
            self._locks[interface] = asyncio.Lock()
        return self._interfaces[interface]

    def _set(self, interface: str, **changes: object) -> None:
        self._interfaces[interface] = self._interfaces[interface].model_copy(update=changes)
