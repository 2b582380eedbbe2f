"""
Configuration module for Progress Sync.
"""
from .constants import *
from .logging_config import setup_logger, get_logger, set_level, logger
from .settings import Settings, settings

__all__ = [
    # Logging
    'setup_logger',
    'get_logger',
    'set_level',
    'logger',
    # Settings
    'Settings',
    'settings',
    # Constants (all exported via *)
]
