"""Browser input to device command tables.

Key names follow ``KeyboardEvent.key``; gamepad indices follow the
Gamepad API "standard" mapping. Movement vectors are (dx, dy) with
positive dy driving forward and positive dx turning right.
"""

from __future__ import annotations

from wifiproxy.domain.models import ActionCommand, ControlAction, ControlCommand

# ---------------------------------------------------------------------------
# Keyboard
# ---------------------------------------------------------------------------

MOVEMENT_KEYS: dict[str, tuple[float, float]] = {
    "w": (0.0, 1.0),
    "arrowup": (0.0, 1.0),
    "s": (0.0, -1.0),
    "arrowdown": (0.0, -1.0),
    "a": (-1.0, 0.0),
    "arrowleft": (-1.0, 0.0),
    "d": (1.0, 0.0),
    "arrowright": (1.0, 0.0),
}

ACTION_KEYS: dict[str, ControlAction] = {
    " ": ControlAction.STOP,
    "space": ControlAction.STOP,
    "spacebar": ControlAction.STOP,
    "x": ControlAction.STOP,
    "r": ControlAction.STAND,
    "f": ControlAction.SIT,
    "j": ControlAction.JUMP,
    "l": ControlAction.LIGHT,
}

# ---------------------------------------------------------------------------
# Gamepad
# ---------------------------------------------------------------------------

# axis index -> (vector component, sign); browser y axes grow downwards
AXIS_MAP: dict[int, tuple[str, float]] = {
    0: ("dx", 1.0),   # left stick horizontal
    1: ("dy", -1.0),  # left stick vertical
    6: ("dx", 1.0),   # D-pad hat horizontal (non-standard pads)
    7: ("dy", -1.0),  # D-pad hat vertical (non-standard pads)
}

DPAD_BUTTONS: dict[int, tuple[float, float]] = {
    12: (0.0, 1.0),   # up
    13: (0.0, -1.0),  # down
    14: (-1.0, 0.0),  # left
    15: (1.0, 0.0),   # right
}

BUTTON_ACTIONS: dict[int, ControlAction] = {
    0: ControlAction.JUMP,   # A / cross
    1: ControlAction.STOP,   # B / circle
    2: ControlAction.SIT,    # X / square
    3: ControlAction.STAND,  # Y / triangle
    9: ControlAction.LIGHT,  # start
}


def normalize_key(key: str) -> str:
    """Case-fold a key name so 'W' and 'w' are the same key."""
    return key if key == " " else key.lower()


def apply_deadzone(value: float, deadzone: float) -> float:
    """Zero small stick deflections and clamp to [-1, 1]."""
    if abs(value) < deadzone:
        return 0.0
    return max(-1.0, min(1.0, value))


def encode_command(command: ControlCommand) -> dict[str, str]:
    """Query parameters understood by the device's control endpoint."""
    if isinstance(command, ActionCommand):
        return {"cmd": command.action.value}
    return {"cmd": "move", "x": f"{command.dx:.2f}", "y": f"{command.dy:.2f}"}
