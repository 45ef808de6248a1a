"""Translation of browser input into rate-limited device commands.

Each browser control connection gets a :class:`ControlSession`. Raw key,
axis and button events are queued (oldest dropped when the queue is full)
and folded into a single current command by :class:`InputState`. A
forwarding loop sends the current command whenever it changes, never
faster than ``min_send_interval``, and re-sends it every
``heartbeat_interval`` so the device's own failsafe keeps seeing traffic
while input is held. Closing a session sends STOP exactly once.
"""

from __future__ import annotations

import asyncio
import logging

from wifiproxy.control.base import CommandSink, UnknownSession
from wifiproxy.control.mapping import (
    ACTION_KEYS,
    AXIS_MAP,
    BUTTON_ACTIONS,
    DPAD_BUTTONS,
    MOVEMENT_KEYS,
    apply_deadzone,
    normalize_key,
)
from wifiproxy.domain.models import (
    NEUTRAL,
    STOP,
    ActionCommand,
    AxisEvent,
    ButtonEvent,
    ControlCommand,
    InputEvent,
    KeyEvent,
    MovementCommand,
)

logger = logging.getLogger(__name__)


class InputState:
    """Held keys, held D-pad buttons and stick positions of one session.

    Movement sources combine additively and the sum is clamped, so
    forward + left gives (-1, 1). A discrete action replaces the current
    command until the movement input next changes.
    """

    def __init__(self, deadzone: float = 0.15) -> None:
        self._deadzone = deadzone
        self._held_keys: set[str] = set()
        self._held_buttons: set[int] = set()
        self._axes: dict[int, float] = {}
        self.command: ControlCommand = NEUTRAL

    def apply(self, event: InputEvent) -> ControlCommand:
        """Fold *event* into the state and return the resulting command."""
        if isinstance(event, KeyEvent):
            self._apply_key(event)
        elif isinstance(event, ButtonEvent):
            self._apply_button(event)
        elif isinstance(event, AxisEvent):
            self._apply_axis(event)
        return self.command

    def _apply_key(self, event: KeyEvent) -> None:
        key = normalize_key(event.key)
        if key in MOVEMENT_KEYS:
            if event.pressed == (key in self._held_keys):
                return  # auto-repeat or stray release
            if event.pressed:
                self._held_keys.add(key)
            else:
                self._held_keys.discard(key)
            self.command = self._movement()
        elif key in ACTION_KEYS and event.pressed:
            self.command = ActionCommand(action=ACTION_KEYS[key])

    def _apply_button(self, event: ButtonEvent) -> None:
        if event.button in DPAD_BUTTONS:
            if event.pressed == (event.button in self._held_buttons):
                return
            if event.pressed:
                self._held_buttons.add(event.button)
            else:
                self._held_buttons.discard(event.button)
            self.command = self._movement()
        elif event.button in BUTTON_ACTIONS and event.pressed:
            self.command = ActionCommand(action=BUTTON_ACTIONS[event.button])

    def _apply_axis(self, event: AxisEvent) -> None:
        if event.axis not in AXIS_MAP:
            return
        value = apply_deadzone(event.value, self._deadzone)
        if self._axes.get(event.axis, 0.0) == value:
            return
        self._axes[event.axis] = value
        self.command = self._movement()

    def _movement(self) -> MovementCommand:
        dx = dy = 0.0
        vectors = [MOVEMENT_KEYS[k] for k in self._held_keys]
        vectors += [DPAD_BUTTONS[b] for b in self._held_buttons]
        for vx, vy in vectors:
            dx += vx
            dy += vy
        for axis, value in self._axes.items():
            component, sign = AXIS_MAP[axis]
            if component == "dx":
                dx += sign * value
            else:
                dy += sign * value
        return MovementCommand(dx=dx, dy=dy)


class ControlSession:
    """One browser's input queue and forwarding loop."""

    def __init__(
        self,
        session_id: str,
        sink: CommandSink,
        deadzone: float = 0.15,
        heartbeat_interval: float = 0.25,
        min_send_interval: float = 0.05,
        queue_size: int = 32,
    ) -> None:
        self.session_id = session_id
        self._sink = sink
        self._state = InputState(deadzone)
        self._heartbeat_interval = heartbeat_interval
        self._min_send_interval = min_send_interval
        self._events: asyncio.Queue[InputEvent] = asyncio.Queue(maxsize=max(1, queue_size))
        self._task: asyncio.Task[None] | None = None
        self._last_forwarded: ControlCommand | None = None
        self._last_sent_at = float("-inf")
        self._closed = False
        self.forwarded = 0
        self.dropped_events = 0

    @property
    def command(self) -> ControlCommand:
        """The command the session currently wants the device to execute."""
        return self._state.command

    @property
    def last_forwarded(self) -> ControlCommand | None:
        return self._last_forwarded

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(
                self._forward_loop(), name=f"control-session-{self.session_id}"
            )

    def submit(self, event: InputEvent) -> None:
        """Queue *event*; a full queue loses its oldest event. Never blocks."""
        if self._closed:
            return
        if self._events.full():
            self._events.get_nowait()
            self.dropped_events += 1
        self._events.put_nowait(event)

    async def close(self) -> None:
        """Stop forwarding and send a single STOP to the device."""
        if self._closed:
            return
        self._closed = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        delivered = await self._sink.send(STOP)
        logger.info(
            "Control session %s closed (%d commands forwarded, STOP %s)",
            self.session_id, self.forwarded, "delivered" if delivered else "not acknowledged",
        )

    def _drain(self) -> None:
        while not self._events.empty():
            self._state.apply(self._events.get_nowait())

    async def _forward_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            self._drain()
            command = self._state.command
            if command != self._last_forwarded:
                due = self._last_sent_at + self._min_send_interval
            else:
                due = self._last_sent_at + self._heartbeat_interval
            now = loop.time()
            if now >= due:
                await self._forward(command, now)
                continue
            try:
                event = await asyncio.wait_for(self._events.get(), due - now)
            except asyncio.TimeoutError:
                continue
            self._state.apply(event)

    async def _forward(self, command: ControlCommand, now: float) -> None:
        self._last_forwarded = command
        self._last_sent_at = now
        self.forwarded += 1
        if not await self._sink.send(command):
            logger.debug("Session %s: command %r not acknowledged", self.session_id, command)


class ControlTranslator:
    """Owns the control sessions of all connected browsers.

    Example usage::

        translator = ControlTranslator(GatewayCommandSink(client))
        translator.open_session("a1b2c3")
        translator.submit("a1b2c3", KeyEvent(key="w"))
        ...
        await translator.close_session("a1b2c3")
    """

    def __init__(
        self,
        sink: CommandSink,
        heartbeat_interval: float = 0.25,
        min_send_interval: float = 0.05,
        deadzone: float = 0.15,
        queue_size: int = 32,
    ) -> None:
        self._sink = sink
        self._heartbeat_interval = heartbeat_interval
        self._min_send_interval = min_send_interval
        self._deadzone = deadzone
        self._queue_size = queue_size
        self._sessions: dict[str, ControlSession] = {}

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def session(self, session_id: str) -> ControlSession | None:
        return self._sessions.get(session_id)

    def open_session(self, session_id: str) -> ControlSession:
        """Start a session, or return the one already open under that id."""
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing
        session = ControlSession(
            session_id,
            self._sink,
            deadzone=self._deadzone,
            heartbeat_interval=self._heartbeat_interval,
            min_send_interval=self._min_send_interval,
            queue_size=self._queue_size,
        )
        self._sessions[session_id] = session
        session.start()
        logger.info("Control session %s opened", session_id)
        return session

    def submit(self, session_id: str, event: InputEvent) -> None:
        """Queue an input event for an open session.

        Raises:
            UnknownSession: If no session is open under *session_id*.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        session.submit(event)

    def current_command(self, session_id: str) -> ControlCommand:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session.command

    async def close_session(self, session_id: str) -> None:
        """Close a session; unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            await session.close()

    async def close(self) -> None:
        for session_id in list(self._sessions):
            await self.close_session(session_id)
