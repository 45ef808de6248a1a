"""wifiproxy -- Secondary-interface bridge for IoT device gateways.

This package connects a dedicated (usually USB) wireless adapter to a
device's access point and exposes the device's live video stream and
control channel to a browser on the primary network. All device traffic
is pinned to the secondary interface; the host's default route is never
touched.
"""

__version__ = "0.1.0"
