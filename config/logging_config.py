"""
Centralized logging configuration.

Every logger lives under the 'progress_sync' namespace. Handlers (console plus
a rotating file) are attached once, to the namespace root, and module loggers
propagate to it.

Environment overrides:
    PROGRESS_SYNC_LOG_LEVEL   DEBUG, INFO, WARNING ...
    PROGRESS_SYNC_LOG_FILE    log file path; empty disables file logging
"""
import os
import logging
import logging.handlers
from pathlib import Path
from typing import Union
from .constants import (
    LOG_LEVEL, LOG_FORMAT, LOG_FILE,
    LOG_MAX_SIZE_MB, LOG_BACKUP_COUNT, LOG_ROOT_NAME
)


def _configure_root() -> logging.Logger:
    root = logging.getLogger(LOG_ROOT_NAME)

    # Avoid adding handlers multiple times
    if root.handlers:
        return root

    level = os.getenv("PROGRESS_SYNC_LOG_LEVEL", LOG_LEVEL).upper()
    root.setLevel(getattr(logging, level, logging.INFO))

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)

    log_file = os.getenv("PROGRESS_SYNC_LOG_FILE", LOG_FILE)
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_SIZE_MB * 1024 * 1024,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    return root


def setup_logger(name: str = None) -> logging.Logger:
    """
    Get a logger inside the progress_sync namespace.

    Usage:
        from config.logging_config import get_logger
        logger = get_logger(__name__)
        logger.info("Message here")

    Args:
        name: Logger name. Names outside the namespace are nested under it;
            None returns the namespace root.

    Returns:
        Configured logging.Logger instance.
    """
    root = _configure_root()
    if not name or name == LOG_ROOT_NAME:
        return root
    if not name.startswith(LOG_ROOT_NAME + "."):
        name = f"{LOG_ROOT_NAME}.{name}"
    return logging.getLogger(name)


def get_logger(name: str = None) -> logging.Logger:
    """Alias for setup_logger for convenience."""
    return setup_logger(name)


def set_level(level: Union[int, str]):
    """Change the level of the namespace root (e.g. from a --verbose flag)"""
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    _configure_root().setLevel(level)


# Singleton logger for quick imports
# Usage: from config.logging_config import logger
logger = setup_logger()
