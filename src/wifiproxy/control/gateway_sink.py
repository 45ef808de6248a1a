"""Gateway command sink.

Sends control commands to the device's HTTP control endpoint as query
parameters, e.g. ``GET /control?cmd=move&x=0.00&y=1.00``.
"""

from __future__ import annotations

import logging

from wifiproxy.control.base import CommandSink
from wifiproxy.control.mapping import encode_command
from wifiproxy.domain.models import ControlCommand
from wifiproxy.gateway.client import GatewayClient

logger = logging.getLogger(__name__)


class GatewayCommandSink(CommandSink):
    """Forwards commands through the interface-pinned GatewayClient."""

    def __init__(self, client: GatewayClient, path: str = "/control") -> None:
        self._client = client
        self._path = path

    async def send(self, command: ControlCommand) -> bool:
        params = encode_command(command)
        delivered = await self._client.send_command(self._path, params)
        if not delivered:
            logger.debug("Command not acknowledged: %s", params)
        return delivered
