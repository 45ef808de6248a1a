"""Logging setup for the wifi-proxy process."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from wifiproxy.config.settings import LoggingConfig

# Chatty at INFO: httpx logs every request, and control heartbeats run
# several times a second.
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Install handlers on the ``wifiproxy`` logger.

    Output goes to stderr, so command results on stdout stay clean, and
    additionally to ``config.file`` when set. Repeated calls replace the
    handlers installed before. HTTP client libraries are held at WARNING
    unless the level is DEBUG.
    """
    config = config or LoggingConfig()
    level = getattr(logging, config.level.upper(), logging.INFO)

    logger = logging.getLogger("wifiproxy")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        path = Path(config.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    library_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    logger.debug("Logging initialized at %s level", logging.getLevelName(level))
