"""Device gateway access for wifiproxy.

All traffic to the device goes through :class:`GatewayClient`, which binds
its connections to the secondary interface's address.
"""

from wifiproxy.gateway.client import GatewayClient, GatewayUnreachable

__all__ = ["GatewayClient", "GatewayUnreachable"]
