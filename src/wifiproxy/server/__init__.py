"""HTTP surface of the proxy: FastAPI app, subscriber registry and page assets."""

from wifiproxy.server.subscribers import SubscriberRegistry

__all__ = ["SubscriberRegistry", "create_app"]


def __getattr__(name: str):
    if name == "create_app":
        from wifiproxy.server.app import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
