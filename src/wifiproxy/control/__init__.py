"""Control translation: browser input events to device commands.

The translator is transport-agnostic; :class:`GatewayCommandSink`
delivers its commands to the device over the pinned gateway client.
"""

from wifiproxy.control.base import CommandSink, UnknownSession
from wifiproxy.control.gateway_sink import GatewayCommandSink
from wifiproxy.control.translator import ControlSession, ControlTranslator, InputState

__all__ = [
    "CommandSink",
    "ControlSession",
    "ControlTranslator",
    "GatewayCommandSink",
    "InputState",
    "UnknownSession",
]
