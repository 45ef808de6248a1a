"""Configuration management for wifiproxy.

Loads settings from the per-user YAML configuration file with environment
variable overrides. The same file holds the saved networks managed by
:class:`wifiproxy.config.credentials.CredentialStore`.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

APP_DIR_NAME = "wifi-proxy"
CONFIG_FILE_NAME = "config.yaml"


class ConfigError(Exception):
    """Raised when the configuration file is malformed or unreadable."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


def config_path() -> Path:
    """Return the per-user configuration file path.

    Honors ``XDG_CONFIG_HOME`` and falls back to ``~/.config``.
    """
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_DIR_NAME / CONFIG_FILE_NAME


class InterfaceConfig(BaseModel):
    connect_attempts: int = Field(default=3, ge=1)
    backoff_base: float = Field(default=1.0, ge=0)
    association_timeout: float = Field(default=45.0, gt=0)
    scan_settle_delay: float = Field(default=0.5, ge=0)
    nmcli_path: str = Field(default="nmcli")


class GatewayConfig(BaseModel):
    port: int = Field(default=80, ge=1, le=65535)
    stream_port: int = Field(default=81, ge=1, le=65535)
    stream_path: str = Field(default="/stream")
    control_path: str = Field(default="/control")
    timeout: float = Field(default=3.0, gt=0)
    command_timeout: float = Field(default=1.0, gt=0)
    read_attempts: int = Field(default=3, ge=1)
    retry_backoff: float = Field(default=0.2, ge=0)


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    static_dir: str | None = Field(default=None)
    idle_timeout: float = Field(default=30.0, gt=0)
    retry_after: int = Field(default=2, ge=0, description="Seconds advertised in Retry-After on 502")


class StreamConfig(BaseModel):
    buffer_size: int = Field(default=3, ge=1)
    reconnect_attempts: int = Field(default=3, ge=1)
    reconnect_backoff: float = Field(default=0.5, ge=0)
    max_frame_bytes: int = Field(default=2 * 1024 * 1024, gt=0)


class ControlConfig(BaseModel):
    heartbeat_interval: float = Field(default=0.25, gt=0)
    min_send_interval: float = Field(default=0.05, ge=0)
    deadzone: float = Field(default=0.15, ge=0, lt=1)
    queue_size: int = Field(default=32, ge=1)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the wifiproxy system.

    Loads from the YAML file and supports environment variable overrides
    (``WIFIPROXY_SERVER__PORT=9000``). Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "WIFIPROXY_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    default_interface: str | None = Field(default=None)

    # Configuration sections
    interface: InterfaceConfig = Field(default_factory=InterfaceConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    control: ControlConfig = Field(default_factory=ControlConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs and rank below the environment
        return (env_settings, dotenv_settings, init_settings, file_secret_settings)


def read_config_file(path: Path) -> dict:
    """Read the raw YAML mapping from *path*; a missing file is empty."""
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}", path=path) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed config file {path}: {e}", path=path) from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping", path=path)
    return data


def load_settings(config_file: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values.
    """
    path = Path(config_file) if config_file else config_path()

    yaml_data = read_config_file(path)
    if yaml_data:
        logger.info("Loaded configuration from %s", path)
    else:
        logger.debug("Config file %s not found or empty, using defaults + env vars", path)

    try:
        return Settings(**yaml_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}", path=path) from e
