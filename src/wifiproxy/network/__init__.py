"""Secondary interface management for wifiproxy.

Owns the lifecycle of the wireless association with the device's access
point. The abstract backend allows the host's network management
facility to be swapped (NetworkManager in production, fakes in tests).

Public API:
    InterfaceController -- Serialized connect/disconnect/status/scan
    NetworkBackend -- Abstract base class for the host facility
    NmcliBackend -- NetworkManager backend driven through nmcli
"""

from wifiproxy.network.base import (
    AlreadyInProgress,
    AssociationRejected,
    AssociationTimeout,
    InterfaceBusy,
    InterfaceError,
    InterfaceNotFound,
    NetworkBackend,
    NetworkManagerUnavailable,
)
from wifiproxy.network.controller import InterfaceController

__all__ = [
    "AlreadyInProgress",
    "AssociationRejected",
    "AssociationTimeout",
    "InterfaceBusy",
    "InterfaceController",
    "InterfaceError",
    "InterfaceNotFound",
    "NetworkBackend",
    "NetworkManagerUnavailable",
    "NmcliBackend",
]


def __getattr__(name: str) -> type:
    """Lazy import for the concrete backend."""
    if name == "NmcliBackend":
        from wifiproxy.network.nmcli import NmcliBackend
        return NmcliBackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
