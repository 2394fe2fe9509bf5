"""Logging helpers for vault sessions."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from .config import LoggingSettings, load_settings

_logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Install stderr (and optional file) handlers on the root logger."""
    settings = settings or load_settings().logging
    level = getattr(logging, settings.level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = []

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if settings.file:
        try:
            Path(settings.file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(settings.file)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", settings.file, exc)

    logging.basicConfig(level=level, handlers=handlers, force=True)
