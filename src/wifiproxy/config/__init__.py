"""Configuration management for wifiproxy.

Loads and validates YAML-based configuration with Pydantic models and
persists saved network credentials in the same per-user file.
"""

from wifiproxy.config.credentials import CredentialStore
from wifiproxy.config.settings import ConfigError, Settings, config_path, load_settings

__all__ = ["ConfigError", "CredentialStore", "Settings", "config_path", "load_settings"]
