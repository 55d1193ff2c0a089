"""Logging setup for the panel, its broker link and the health endpoint."""

from __future__ import annotations

import logging
from typing import List

from .config import LoggingConfig

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Broker and HTTP chatter, kept at WARNING unless ``log_network`` is set.
NETWORK_LOGGERS = (
    "aiohttp.access",
    "paho",
    "relay_panel.adapters.mqtt.paho",
)


def _handlers(config: LoggingConfig) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.path is not None:
        config.path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.path, encoding="utf-8"))
    return handlers


def configure_logging(config: LoggingConfig) -> None:
    """Replace the root handlers according to the ``[logging]`` section.

    Console output is always enabled; ``config.path`` adds a file copy of
    the same records.
    """

    logging.captureWarnings(True)
    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=_handlers(config),
        force=True,
    )

    network_level = logging.NOTSET if config.log_network else logging.WARNING
    for name in NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(network_level)
