from __future__ import annotations

import logging
import os
from typing import Optional

from .config_loader import PipelineConfig

LOG_LEVEL_ENV = "ROLODEX_IMPORT_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
PACKAGE_LOGGER = "rolodex_import"


def _resolve_level(level_name: str) -> int:
    """Case-insensitive level name (or number) to its numeric value; unknown names mean INFO."""
    normalized = (level_name or "INFO").strip().upper()
    if normalized.isdigit():
        return int(normalized)
    level = logging.getLevelName(normalized)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(config: PipelineConfig, level_override: Optional[str] = None) -> int:
    """
    Set the import pipeline's log level and return it.

    Precedence: ``ROLODEX_IMPORT_LOG_LEVEL``, then ``level_override`` (the
    ``--log-level`` flag), then ``config.logging.level``, then ``WARNING``.

    The ``rolodex_import`` package logger always gets the level, so pipeline
    messages follow it even when a host application owns the root handlers.
    A bare interpreter gets a stderr handler using ``LOG_FORMAT``.
    """
    env_level = os.getenv(LOG_LEVEL_ENV)
    effective_level_name = env_level or level_override or config.logging.level or "WARNING"
    level_value = _resolve_level(effective_level_name)

    logging.getLogger(PACKAGE_LOGGER).setLevel(level_value)
    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level_value)
    else:
        logging.basicConfig(level=level_value, format=LOG_FORMAT)
    return level_value
