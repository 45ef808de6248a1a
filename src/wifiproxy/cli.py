"""Command-line interface for wifi-proxy.

Manages the secondary wireless association (list, scan, connect, status,
disconnect), saved networks, and runs the browser proxy server.

Exit codes: 0 on success, 1 when an interface or gateway operation
fails, 2 on configuration errors or when NetworkManager is unavailable.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import httpx
import yaml

from wifiproxy.config.credentials import CredentialStore
from wifiproxy.config.settings import ConfigError, Settings
from wifiproxy.domain.models import AccessPoint, Interface, NetworkCredential, WifiInterface
from wifiproxy.gateway.client import GatewayClient, GatewayUnreachable
from wifiproxy.network.base import InterfaceError, NetworkManagerUnavailable
from wifiproxy.network.controller import InterfaceController

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_FATAL = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="wifi-proxy",
        description="Reach a Wi-Fi device through a secondary adapter and proxy it to the browser",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: ~/.config/wifi-proxy/config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    # shared by every subcommand
    iface = argparse.ArgumentParser(add_help=False)
    iface.add_argument(
        "-i", "--interface", type=str, default=None,
        help="Wireless interface (default: configured default, then first USB adapter)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("list-interfaces", parents=[iface], help="List wireless interfaces")
    subparsers.add_parser("scan", parents=[iface], help="Scan for access points")

    connect_parser = subparsers.add_parser("connect", parents=[iface], help="Connect to a network")
    connect_parser.add_argument("ssid", help="Network name")
    connect_parser.add_argument("--password", type=str, default=None, help="Network password")
    connect_parser.add_argument(
        "--save", action="store_true", help="Save the credentials after a successful connect",
    )

    subparsers.add_parser("status", parents=[iface], help="Show connection status")
    subparsers.add_parser("disconnect", parents=[iface], help="Disconnect the interface")

    serve_parser = subparsers.add_parser("serve", parents=[iface], help="Run the browser proxy")
    serve_parser.add_argument("--port", type=int, default=None, help="Listen port (default: 8080)")
    serve_parser.add_argument("--host", type=str, default=None, help="Listen address")
    serve_parser.add_argument(
        "--connect", dest="connect_ssid", metavar="SSID", default=None,
        help="Connect to this network before serving",
    )
    serve_parser.add_argument("--password", type=str, default=None, help="Password for --connect")

    save_parser = subparsers.add_parser(
        "save-network", parents=[iface], help="Save network credentials without connecting",
    )
    save_parser.add_argument("ssid", help="Network name")
    save_parser.add_argument("--password", type=str, required=True, help="Network password")

    subparsers.add_parser("show-config", parents=[iface], help="Show configuration and saved networks")

    fetch_parser = subparsers.add_parser(
        "fetch-gateway", parents=[iface], help="Save the gateway's web page to a file",
    )
    fetch_parser.add_argument(
        "--output", type=Path, default=Path("gateway.html"), help="Output file (default: gateway.html)",
    )
    fetch_parser.add_argument("--url", type=str, default=None, help="URL on the gateway to fetch")

    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def signal_bars(signal: int) -> str:
    if signal >= 80:
        return "████"
    if signal >= 60:
        return "███░"
    if signal >= 40:
        return "██░░"
    if signal >= 20:
        return "█░░░"
    return "░░░░"


def truncate_ssid(ssid: str, width: int = 32) -> str:
    return ssid if len(ssid) <= width else ssid[: width - 3] + "..."


def mask_password(password: str) -> str:
    return "*" * min(len(password), 12)


def print_interfaces(interfaces: list[WifiInterface]) -> None:
    if not interfaces:
        print("No wireless interfaces found.")
        return
    print(f"{'INTERFACE':<16} {'STATE':<12} TYPE")
    print("-" * 40)
    for iface in interfaces:
        print(f"{iface.name:<16} {iface.state:<12} {'USB' if iface.is_usb else 'Built-in'}")


def print_networks(networks: list[AccessPoint]) -> None:
    if not networks:
        print("No networks found.")
        return
    print(f"{'SSID':<32} {'SIGNAL':>6} SECURITY")
    print("-" * 60)
    for ap in networks:
        print(f"{truncate_ssid(ap.ssid):<32} {ap.signal:>3}% {signal_bars(ap.signal)} {ap.security}")


def print_status(iface: Interface) -> None:
    print(f"Interface: {iface.name}")
    print(f"State:     {iface.state.value}")
    print(f"SSID:      {iface.ssid or '-'}")
    print(f"IP:        {iface.ip_address or '-'}")
    print(f"Gateway:   {iface.gateway or '-'}")
    if iface.last_error:
        print(f"Error:     {iface.last_error}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _build_controller(settings: Settings, store: CredentialStore) -> InterfaceController:
    from wifiproxy.network.nmcli import NmcliBackend

    cfg = settings.interface
    backend = NmcliBackend(nmcli_path=cfg.nmcli_path, scan_settle_delay=cfg.scan_settle_delay)
    return InterfaceController(
        backend,
        credentials=store,
        connect_attempts=cfg.connect_attempts,
        backoff_base=cfg.backoff_base,
        association_timeout=cfg.association_timeout,
        default_interface=settings.default_interface,
    )


async def _list_interfaces(controller: InterfaceController) -> int:
    print_interfaces(await controller.list_interfaces())
    return EXIT_OK


async def _scan(controller: InterfaceController, interface: str | None) -> int:
    name = await controller.resolve_interface(interface)
    print(f"Scanning on interface: {name}\n")
    print_networks(await controller.scan(name))
    return EXIT_OK


async def _connect(
    controller: InterfaceController,
    ssid: str,
    password: str | None,
    interface: str | None,
    save: bool,
) -> int:
    name = await controller.resolve_interface(interface)
    print(f"Connecting to '{ssid}' on interface {name}...")
    iface = await controller.connect(ssid, password, interface=name, save=save)
    print("Connected successfully!")
    if save:
        print("Credentials saved to config.")
    print()
    print_status(iface)
    return EXIT_OK


async def _status(controller: InterfaceController, interface: str | None) -> int:
    name = await controller.resolve_interface(interface)
    print_status(await controller.refresh(name))
    return EXIT_OK


async def _disconnect(controller: InterfaceController, interface: str | None) -> int:
    name = await controller.resolve_interface(interface)
    print(f"Disconnecting interface {name}...")
    await controller.disconnect(name)
    print("Disconnected.")
    return EXIT_OK


async def _prepare_serve(
    controller: InterfaceController,
    interface: str | None,
    ssid: str | None,
    password: str | None,
) -> Interface:
    """Bring up (or inspect) the interface the proxy will use."""
    await controller.check_available()
    name = await controller.resolve_interface(interface)
    if ssid:
        print(f"Connecting to '{ssid}' on interface {name}...")
        iface = await controller.connect(ssid, password, interface=name)
    else:
        iface = await controller.refresh(name)
    if not iface.is_connected or not iface.gateway:
        raise GatewayUnreachable(f"No gateway found for interface {name}; connect first")
    return iface


async def _fetch_gateway(
    controller: InterfaceController,
    settings: Settings,
    interface: str | None,
    output: Path,
    url: str | None,
) -> int:
    name = await controller.resolve_interface(interface)
    iface = await controller.refresh(name)
    async with GatewayClient.from_interface(
        iface, port=settings.gateway.port, timeout=settings.gateway.timeout,
    ) as client:
        target = url or client.url("/")
        print(f"Fetching {target} ...")
        try:
            content = await client.fetch(target)
        except httpx.HTTPStatusError as e:
            print(f"Error: gateway answered {e.response.status_code}", file=sys.stderr)
            return EXIT_FAILURE
    output.write_bytes(content)
    print(f"Saved to {output}")
    return EXIT_OK


def _save_network(store: CredentialStore, ssid: str, password: str, interface: str | None) -> int:
    store.save(NetworkCredential(ssid=ssid, password=password, interface=interface))
    print(f"Saved network '{ssid}' to {store.path}")
    return EXIT_OK


def _show_config(settings: Settings, store: CredentialStore) -> int:
    print(f"Config file: {store.path}")
    print()
    networks = store.load()
    if not networks:
        print("No saved networks.")
    else:
        print(f"{'SSID':<24} {'INTERFACE':<20} PASSWORD")
        print("-" * 60)
        for net in networks:
            print(f"{net.ssid:<24} {net.interface or '-':<20} {mask_password(net.password)}")
    print()
    print("Effective settings:")
    print(yaml.safe_dump(settings.model_dump(mode="json"), sort_keys=False).rstrip())
    return EXIT_OK


def _serve(settings: Settings, controller: InterfaceController, args: argparse.Namespace) -> int:
    import uvicorn

    from wifiproxy.server.app import create_app

    iface = asyncio.run(
        _prepare_serve(controller, args.interface, args.connect_ssid, args.password)
    )
    host = args.host or settings.server.host
    port = args.port or settings.server.port
    logger.info("Starting proxy on %s:%d -> gateway %s via %s", host, port, iface.gateway, iface.name)
    print(f"Proxying http://{host}:{port}/ -> http://{iface.gateway}/ via {iface.name}")
    app = create_app(settings=settings, interface=iface)
    uvicorn.run(app, host=host, port=port)
    return EXIT_OK


def run(args: argparse.Namespace, settings: Settings) -> int:
    """Dispatch a parsed command; returns the process exit code."""
    store = CredentialStore(args.config)

    if args.command == "save-network":
        return _save_network(store, args.ssid, args.password, args.interface)
    if args.command == "show-config":
        return _show_config(settings, store)

    controller = _build_controller(settings, store)

    if args.command == "list-interfaces":
        return asyncio.run(_list_interfaces(controller))
    elif args.command == "scan":
        return asyncio.run(_scan(controller, args.interface))
    elif args.command == "connect":
        return asyncio.run(
            _connect(controller, args.ssid, args.password, args.interface, args.save)
        )
    elif args.command == "status":
        return asyncio.run(_status(controller, args.interface))
    elif args.command == "disconnect":
        return asyncio.run(_disconnect(controller, args.interface))
    elif args.command == "fetch-gateway":
        return asyncio.run(
            _fetch_gateway(controller, settings, args.interface, args.output, args.url)
        )
    elif args.command == "serve":
        return _serve(settings, controller, args)
    raise ValueError(f"Unknown command {args.command}")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the wifi-proxy CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from wifiproxy.config.settings import load_settings
    from wifiproxy.utils.logging import setup_logging

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_FATAL)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    try:
        code = run(args, settings)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        code = EXIT_FATAL
    except NetworkManagerUnavailable as e:
        print(f"Error: {e}", file=sys.stderr)
        code = EXIT_FATAL
    except (InterfaceError, GatewayUnreachable) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = EXIT_FAILURE
    sys.exit(code)


if __name__ == "__main__":
    main()
