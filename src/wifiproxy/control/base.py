"""Abstract base class for control command delivery.

The translator hands every command it decides to forward to a
:class:`CommandSink`, so the delivery mechanism (the device gateway in
production, a recorder in tests) can change without touching the
forwarding policy.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from wifiproxy.domain.models import ControlCommand

logger = logging.getLogger(__name__)


class CommandSink(ABC):
    """Abstract interface for delivering control commands to the device.

    Delivery is best-effort: a lost command is superseded by the next one
    or by the next keep-alive, so implementations report failure through
    the return value instead of raising.
    """

    @abstractmethod
    async def send(self, command: ControlCommand) -> bool:
        """Deliver *command* once.

        Returns:
            True if the device acknowledged the command.
        """
        ...


class UnknownSession(KeyError):
    """Raised when an event targets a control session that is not open."""
