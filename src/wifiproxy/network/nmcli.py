"""NetworkManager backend driven through the ``nmcli`` command.

All commands use nmcli's terse (``-t``) output, which separates fields
with ``:`` and escapes literal colons and backslashes inside values.
Commands run as asyncio subprocesses so the event loop keeps serving
browser connections while an association is in progress.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from wifiproxy.domain.models import AccessPoint, DeviceStatus, WifiInterface
from wifiproxy.network.base import (
    AssociationRejected,
    AssociationTimeout,
    InterfaceError,
    InterfaceNotFound,
    NetworkBackend,
    NetworkManagerUnavailable,
)

logger = logging.getLogger(__name__)

SYSFS_NET = Path("/sys/class/net")

# Seconds to wait for nmcli commands that do not associate
DEFAULT_COMMAND_TIMEOUT = 15.0


def split_terse(line: str) -> list[str]:
    """Split one line of nmcli terse output into its fields."""
    fields: list[str] = []
    current: list[str] = []
    escaped = False
    for char in line:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return fields


def is_usb_interface(name: str, sysfs_root: Path = SYSFS_NET) -> bool:
    """Whether *name* is backed by a USB device according to sysfs."""
    device = sysfs_root / name / "device"
    if not device.exists():
        # virtual interfaces have no device link
        return False
    try:
        return "usb" in os.readlink(device)
    except OSError:
        pass
    try:
        return "usb" in (device / "uevent").read_text().lower()
    except OSError:
        return False


def parse_device_list(stdout: str, sysfs_root: Path = SYSFS_NET) -> list[WifiInterface]:
    """Parse ``nmcli -t -f DEVICE,TYPE,STATE device`` output."""
    interfaces = []
    for line in stdout.splitlines():
        parts = split_terse(line)
        if len(parts) >= 3 and parts[1] == "wifi":
            interfaces.append(
                WifiInterface(
                    name=parts[0],
                    state=parts[2],
                    is_usb=is_usb_interface(parts[0], sysfs_root),
                )
            )
    return interfaces


def parse_device_show(interface: str, stdout: str) -> DeviceStatus:
    """Parse ``nmcli -t device show <iface>`` output."""
    values: dict[str, str] = {}
    for line in stdout.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            values[key] = value.strip()

    state = values.get("GENERAL.STATE", "unknown")
    code_text = state.split(" ", 1)[0]
    state_code = int(code_text) if code_text.isdigit() else 0

    def _present(key: str) -> str | None:
        value = values.get(key, "")
        return value if value and value != "--" else None

    return DeviceStatus(
        interface=interface,
        state_code=state_code,
        state=state,
        connection=_present("GENERAL.CONNECTION"),
        ip_address=_present("IP4.ADDRESS[1]"),
        gateway=_present("IP4.GATEWAY"),
    )


def parse_wifi_list(stdout: str) -> list[AccessPoint]:
    """Parse ``nmcli -t -f SSID,SIGNAL,SECURITY device wifi list`` output.

    Hidden networks are skipped and an SSID seen on several radios keeps
    its strongest entry; the result is sorted strongest first.
    """
    best: dict[str, AccessPoint] = {}
    for line in stdout.splitlines():
        parts = split_terse(line)
        if len(parts) < 3 or not parts[0]:
            continue
        try:
            signal = max(0, min(100, int(parts[1])))
        except ValueError:
            signal = 0
        ap = AccessPoint(ssid=parts[0], signal=signal, security=":".join(parts[2:]))
        if ap.ssid not in best or best[ap.ssid].signal < ap.signal:
            best[ap.ssid] = ap
    return sorted(best.values(), key=lambda ap: ap.signal, reverse=True)


def classify_failure(interface: str, message: str) -> InterfaceError:
    """Map an nmcli error message to the matching InterfaceError."""
    text = message.strip() or "nmcli failed without a message"
    lowered = text.lower()
    if "networkmanager is not running" in lowered or "could not create nmclient" in lowered:
        return NetworkManagerUnavailable(text, interface=interface)
    if "device" in lowered and "not found" in lowered:
        return InterfaceNotFound(f"Interface '{interface}' not found", interface=interface)
    if "timeout" in lowered or "timed out" in lowered:
        return AssociationTimeout(text, interface=interface)
    return AssociationRejected(text, interface=interface)


class NmcliBackend(NetworkBackend):
    """Drives NetworkManager through ``nmcli`` subprocesses."""

    def __init__(
        self,
        nmcli_path: str = "nmcli",
        scan_settle_delay: float = 0.5,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        sysfs_root: Path = SYSFS_NET,
    ) -> None:
        self._nmcli = nmcli_path
        self._scan_settle_delay = scan_settle_delay
        self._command_timeout = command_timeout
        self._sysfs_root = sysfs_root

    async def check_available(self) -> None:
        try:
            code, out, err = await self._run("-t", "-f", "RUNNING", "general")
        except asyncio.TimeoutError as e:
            raise NetworkManagerUnavailable("nmcli did not respond") from e
        if code != 0 or out.strip() != "running":
            raise NetworkManagerUnavailable(
                f"NetworkManager is not running: {(err or out).strip()}"
            )

    async def list_interfaces(self) -> list[WifiInterface]:
        out = await self._checked("", "-t", "-f", "DEVICE,TYPE,STATE", "device")
        return parse_device_list(out, self._sysfs_root)

    async def device_status(self, interface: str) -> DeviceStatus:
        out = await self._checked(
            interface,
            "-t", "-f", "GENERAL.STATE,GENERAL.CONNECTION,IP4.ADDRESS,IP4.GATEWAY",
            "device", "show", interface,
        )
        return parse_device_show(interface, out)

    async def connect(self, interface: str, ssid: str, password: str | None) -> None:
        args = ["device", "wifi", "connect", ssid]
        if password:
            args += ["password", password]
        args += ["ifname", interface]
        # association is bounded by the caller
        code, out, err = await self._run(*args, bounded=False)
        if code != 0:
            raise classify_failure(interface, err or out)
        logger.debug("nmcli: %s", out.strip())

    async def disconnect(self, interface: str) -> None:
        code, out, err = await self._run("device", "disconnect", interface)
        if code == 0:
            return
        message = err or out
        if "not active" in message.lower():
            logger.debug("Interface %s was not active", interface)
            return
        raise classify_failure(interface, message)

    async def scan(self, interface: str) -> list[AccessPoint]:
        # rescan fails harmlessly while the radio is already scanning
        code, _, err = await self._run("device", "wifi", "rescan", "ifname", interface)
        if code != 0:
            logger.debug("Rescan on %s refused: %s", interface, err.strip())
        await asyncio.sleep(self._scan_settle_delay)
        out = await self._checked(
            interface,
            "-t", "-f", "SSID,SIGNAL,SECURITY",
            "device", "wifi", "list", "ifname", interface,
        )
        return parse_wifi_list(out)

    async def _checked(self, interface: str, *args: str) -> str:
        """Run nmcli and return stdout, raising the classified error on failure."""
        try:
            code, out, err = await self._run(*args)
        except asyncio.TimeoutError as e:
            raise NetworkManagerUnavailable(f"nmcli {' '.join(args)} timed out") from e
        if code != 0:
            raise classify_failure(interface, err or out)
        return out

    async def _run(self, *args: str, bounded: bool = True) -> tuple[int, str, str]:
        """Run nmcli with *args*; returns (returncode, stdout, stderr)."""
        timeout = self._command_timeout if bounded else None
        try:
            proc = await asyncio.create_subprocess_exec(
                self._nmcli, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise NetworkManagerUnavailable(f"{self._nmcli} not found; is NetworkManager installed?") from e
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout)
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        return (
            proc.returncode or 0,
            out.decode("utf-8", errors="replace"),
            err.decode("utf-8", errors="replace"),
        )
