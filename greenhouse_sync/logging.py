"""Logging setup for the long-running sync service and the one-shot CLI."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from . import constants
from .config import LoggingConfig

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# aiohttp loggers that report every request and connection
NETWORK_LOGGERS = ("aiohttp.access", "aiohttp.client", "aiohttp.server")


def resolve_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(settings: LoggingConfig) -> logging.Logger:
    """Install console and optional rotating file handlers on the root logger.

    The file handler rolls over at ``LOG_MAX_BYTES`` and keeps
    ``LOG_BACKUP_COUNT`` old files, so a service left polling for weeks does
    not fill the disk. HTTP traffic from aiohttp is only shown when
    ``settings.log_network`` is set.
    """

    logging.captureWarnings(True)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    logging.basicConfig(level=resolve_level(settings.level), format=LOG_FORMAT)

    if settings.path:
        settings.path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.path,
            maxBytes=constants.LOG_MAX_BYTES,
            backupCount=constants.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    network_level = logging.DEBUG if settings.log_network else logging.WARNING
    for name in NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(network_level)

    return root


__all__ = ["LOG_FORMAT", "NETWORK_LOGGERS", "configure_logging", "resolve_level"]
