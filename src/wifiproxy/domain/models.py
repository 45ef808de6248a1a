"""Core domain models for the wifiproxy system.

These models represent the data flowing through the system: the state of
the secondary wireless interface, saved network credentials, frames
relayed from the device's camera, and the control commands translated
from browser input.
"""

from __future__ import annotations

import enum
import math
import time
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class InterfaceState(str, enum.Enum):
    """Association state of a wireless interface."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class SubscriptionKind(str, enum.Enum):
    """What a browser connection is subscribed to."""

    STREAM = "stream"
    CONTROL = "control"


class ControlAction(str, enum.Enum):
    """Discrete actions understood by the device."""

    STOP = "stop"
    STAND = "stand"
    SIT = "sit"
    JUMP = "jump"
    LIGHT = "light"


# ---------------------------------------------------------------------------
# Interface / Network Models
# ---------------------------------------------------------------------------


class Interface(BaseModel):
    """Snapshot of one wireless interface as tracked by the controller.

    The controller owns the live value; everything else receives copies.
    """

    name: str = Field(description="Adapter name as shown by `ip link` (e.g. 'wlan1')")
    state: InterfaceState = Field(default=InterfaceState.DISCONNECTED)
    ssid: str | None = Field(default=None, description="SSID of the associated access point")
    ip_address: str | None = Field(
        default=None, description="Assigned IPv4 address in CIDR form (e.g. '192.168.4.2/24')"
    )
    gateway: str | None = Field(default=None, description="IPv4 gateway, usually the device itself")
    last_error: str | None = Field(default=None, description="Reason of the last failed transition")

    @property
    def local_address(self) -> str | None:
        """The assigned address without its prefix length."""
        if not self.ip_address:
            return None
        return self.ip_address.split("/", 1)[0]

    @property
    def is_connected(self) -> bool:
        return self.state == InterfaceState.CONNECTED


class WifiInterface(BaseModel):
    """A wireless adapter present on the host."""

    model_config = ConfigDict(frozen=True)

    name: str
    state: str = Field(description="Raw device state reported by the host (e.g. 'connected')")
    is_usb: bool = Field(default=False, description="Whether the adapter sits on a USB bus")


class DeviceStatus(BaseModel):
    """Raw host view of a single network device."""

    model_config = ConfigDict(frozen=True)

    interface: str
    state_code: int = Field(default=0, description="NetworkManager device state code")
    state: str = Field(default="unknown", description="Raw state string, e.g. '100 (connected)'")
    connection: str | None = Field(default=None, description="Active connection profile name")
    ip_address: str | None = None
    gateway: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.state_code == 100

    @property
    def is_activating(self) -> bool:
        # NM_DEVICE_STATE_PREPARE (40) .. NM_DEVICE_STATE_SECONDARIES (90)
        return 40 <= self.state_code < 100


class AccessPoint(BaseModel):
    """An access point observed during a scan."""

    model_config = ConfigDict(frozen=True)

    ssid: str
    signal: int = Field(default=0, ge=0, le=100, description="Signal strength in percent")
    security: str = Field(default="", description="Security mode, e.g. 'WPA2'")


class NetworkCredential(BaseModel):
    """A saved network, unique by (ssid, interface)."""

    model_config = ConfigDict(frozen=True)

    ssid: str = Field(min_length=1)
    password: str = Field(default="")
    interface: str | None = Field(default=None)

    @property
    def key(self) -> tuple[str, str | None]:
        return (self.ssid, self.interface)


# ---------------------------------------------------------------------------
# Proxy / Stream Models
# ---------------------------------------------------------------------------


class ProxySubscriber(BaseModel):
    """A browser connection registered with the proxy."""

    id: str
    kind: SubscriptionKind
    last_seen: float = Field(default_factory=time.monotonic, description="Monotonic liveness timestamp")

    def touch(self) -> None:
        self.last_seen = time.monotonic()


class StreamFrame(BaseModel):
    """A single frame read from the device's media endpoint."""

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(ge=1, description="Relay-local monotonic sequence number")
    payload: bytes = Field(description="Encoded frame (JPEG for MJPEG sources)")
    captured_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Control Command Models (discriminated union)
# ---------------------------------------------------------------------------


def _clamp(value: float) -> float:
    if not math.isfinite(value):
        raise ValueError("must be a finite number")
    return max(-1.0, min(1.0, value))


class ActionCommand(BaseModel):
    """A discrete action such as stop or jump."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["action"] = "action"
    action: ControlAction


class MovementCommand(BaseModel):
    """A continuous movement vector; both components clamped to [-1, 1]."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["move"] = "move"
    dx: float = Field(default=0.0, description="Turn/strafe component, positive is right")
    dy: float = Field(default=0.0, description="Drive component, positive is forward")

    @field_validator("dx", "dy")
    @classmethod
    def _clamp_component(cls, value: float) -> float:
        return _clamp(value)

    @property
    def is_neutral(self) -> bool:
        return self.dx == 0.0 and self.dy == 0.0


ControlCommand = Annotated[
    Union[ActionCommand, MovementCommand],
    Field(discriminator="kind"),
]

NEUTRAL = MovementCommand(dx=0.0, dy=0.0)
STOP = ActionCommand(action=ControlAction.STOP)


# ---------------------------------------------------------------------------
# Browser Input Event Models (discriminated union)
# ---------------------------------------------------------------------------


class KeyEvent(BaseModel):
    """A keyboard key going down or up (KeyboardEvent.key naming)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["key"] = "key"
    key: str = Field(min_length=1, description="Key name, e.g. 'w', 'ArrowUp', ' '")
    pressed: bool = Field(default=True)


class AxisEvent(BaseModel):
    """A gamepad axis moving (Gamepad API standard mapping)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["axis"] = "axis"
    axis: int = Field(ge=0)
    value: float = Field(default=0.0)

    @field_validator("value")
    @classmethod
    def _clamp_value(cls, value: float) -> float:
        return _clamp(value)


class ButtonEvent(BaseModel):
    """A gamepad button going down or up."""

    model_config = ConfigDict(frozen=True)

    type: Literal["button"] = "button"
    button: int = Field(ge=0)
    pressed: bool = Field(default=True)


InputEvent = Annotated[
    Union[KeyEvent, AxisEvent, ButtonEvent],
    Field(discriminator="type"),
]
