"""Saved network credentials.

Credentials live in the ``networks`` list of the per-user YAML config
file, in the order they were first saved. Other top-level keys of the
file (tuning sections, ``default_interface``) are preserved on write.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import yaml
from pydantic import ValidationError

from wifiproxy.config.settings import ConfigError, config_path, read_config_file
from wifiproxy.domain.models import NetworkCredential

logger = logging.getLogger(__name__)


class CredentialStore:
    """Reads and writes saved networks in the config file.

    Example usage::

        store = CredentialStore()
        store.save(NetworkCredential(ssid="RoboDog-AP", password="secret", interface="wlan1"))
        cred = store.lookup("RoboDog-AP", interface="wlan1")
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path else config_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[NetworkCredential]:
        """Return all saved networks in file order.

        Raises:
            ConfigError: If the file or its ``networks`` entries are malformed.
        """
        data = read_config_file(self._path)
        raw = data.get("networks") or []
        if not isinstance(raw, list):
            raise ConfigError(f"'networks' in {self._path} must be a list", path=self._path)
        try:
            return [NetworkCredential.model_validate(entry) for entry in raw]
        except ValidationError as e:
            raise ConfigError(f"Invalid network entry in {self._path}: {e}", path=self._path) from e

    def lookup(self, ssid: str, interface: str | None = None) -> NetworkCredential | None:
        """Find the credential for *ssid*, preferring an exact interface match.

        An entry saved without an interface applies to any interface.
        """
        fallback: NetworkCredential | None = None
        for cred in self.load():
            if cred.ssid != ssid:
                continue
            if cred.interface == interface:
                return cred
            if cred.interface is None and fallback is None:
                fallback = cred
        return fallback

    def save(self, credential: NetworkCredential) -> None:
        """Insert or replace the entry with the same (ssid, interface)."""
        data = read_config_file(self._path)
        networks = self.load()
        for index, existing in enumerate(networks):
            if existing.key == credential.key:
                networks[index] = credential
                break
        else:
            networks.append(credential)

        data["networks"] = [cred.model_dump() for cred in networks]
        self._write(data)
        logger.info("Saved network '%s' to %s", credential.ssid, self._path)

    def _write(self, data: dict) -> None:
        """Replace the file atomically; it is private from the first byte."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            # mkstemp creates the file with mode 0600
            fd, tmp = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False)
                os.replace(tmp, self._path)
            except BaseException:
                os.unlink(tmp)
                raise
        except OSError as e:
            raise ConfigError(f"Cannot write config file {self._path}: {e}", path=self._path) from e
