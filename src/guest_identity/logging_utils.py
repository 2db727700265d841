from __future__ import annotations

import logging
import os
from typing import Optional

from .config_loader import PipelineConfig

LOG_LEVEL_ENV = "GUEST_IDENTITY_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
PACKAGE_LOGGER = "guest_identity"


def effective_level_name(config: PipelineConfig, level_override: Optional[str] = None) -> str:
    """
    Pick the level name by precedence:

    1. ``GUEST_IDENTITY_LOG_LEVEL`` environment variable (if set)
    2. ``level_override`` provided by the caller (e.g., ``--log-level``)
    3. ``config.logging.level`` from the YAML config
    4. ``WARNING``
    """
    name = os.getenv(LOG_LEVEL_ENV) or level_override or config.logging.level or "WARNING"
    return name.strip().upper()


def _resolve_level(level_name: str) -> int:
    if level_name.isdigit():
        return int(level_name)
    value = logging.getLevelName(level_name)
    if isinstance(value, int):
        return value
    logging.getLogger(PACKAGE_LOGGER).warning(
        "Unknown log level %r; using WARNING", level_name
    )
    return logging.WARNING


def configure_logging(config: PipelineConfig, level_override: Optional[str] = None) -> int:
    """Apply the effective level to the root and package loggers and return it."""
    level_value = _resolve_level(effective_level_name(config, level_override))

    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level_value)
    else:
        logging.basicConfig(level=level_value, format=LOG_FORMAT)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level_value)
    return level_value
