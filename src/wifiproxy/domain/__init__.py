"""Domain models for wifiproxy.

This package contains the core data structures, enumerations, and value
objects shared by the interface controller, the stream relay, and the
control translator. All models use Pydantic v2 for validation.
"""

from wifiproxy.domain.models import (
    AccessPoint,
    ActionCommand,
    AxisEvent,
    ButtonEvent,
    ControlAction,
    ControlCommand,
    DeviceStatus,
    InputEvent,
    Interface,
    InterfaceState,
    KeyEvent,
    MovementCommand,
    NetworkCredential,
    ProxySubscriber,
    StreamFrame,
    SubscriptionKind,
    WifiInterface,
)

__all__ = [
    "AccessPoint",
    "ActionCommand",
    "AxisEvent",
    "ButtonEvent",
    "ControlAction",
    "ControlCommand",
    "DeviceStatus",
    "InputEvent",
    "Interface",
    "InterfaceState",
    "KeyEvent",
    "MovementCommand",
    "NetworkCredential",
    "ProxySubscriber",
    "StreamFrame",
    "SubscriptionKind",
    "WifiInterface",
]
