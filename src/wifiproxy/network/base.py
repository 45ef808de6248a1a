"""Abstract base class for the host's network management facility.

The interface controller never talks to the operating system directly;
it drives a :class:`NetworkBackend`. The production backend wraps
NetworkManager's ``nmcli``; tests substitute an in-memory fake.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from wifiproxy.domain.models import AccessPoint, DeviceStatus, WifiInterface

logger = logging.getLogger(__name__)


class NetworkBackend(ABC):
    """Abstract interface to the host's wireless management.

    Implementations translate these calls into the host's own tooling and
    classify its failures into the :class:`InterfaceError` family.
    """

    @abstractmethod
    async def check_available(self) -> None:
        """Verify the management facility is installed and running.

        Raises:
            NetworkManagerUnavailable: If it is missing or not running.
        """
        ...

    @abstractmethod
    async def list_interfaces(self) -> list[WifiInterface]:
        """List the wireless adapters present on the host."""
        ...

    @abstractmethod
    async def device_status(self, interface: str) -> DeviceStatus:
        """Read the current state of *interface* from the host.

        Raises:
            InterfaceNotFound: If the device does not exist.
        """
        ...

    @abstractmethod
    async def connect(self, interface: str, ssid: str, password: str | None) -> None:
        """Associate *interface* with *ssid*, returning once activated.

        Raises:
            AssociationRejected: If the access point refused the association.
            AssociationTimeout: If activation did not complete in time.
            InterfaceNotFound: If the device does not exist.
        """
        ...

    @abstractmethod
    async def disconnect(self, interface: str) -> None:
        """Tear down the association of *interface*; inactive devices are fine."""
        ...

    @abstractmethod
    async def scan(self, interface: str) -> list[AccessPoint]:
        """Return the access points visible from *interface*."""
        ...


class InterfaceError(Exception):
    """Base class for failures of interface operations."""

    def __init__(self, message: str, interface: str = "") -> None:
        super().__init__(message)
        self.interface = interface


class InterfaceNotFound(InterfaceError):
    """The named interface is absent, or no suitable adapter was found."""


class AssociationTimeout(InterfaceError):
    """The access point did not complete the association in time."""


class AssociationRejected(InterfaceError):
    """The access point refused the association (e.g. bad password)."""


class AlreadyInProgress(InterfaceError):
    """Another transition is running on the same interface."""


class InterfaceBusy(InterfaceError):
    """The interface is mid-transition and cannot be scanned."""


class NetworkManagerUnavailable(InterfaceError):
    """The host's network management facility is missing or crashed."""
