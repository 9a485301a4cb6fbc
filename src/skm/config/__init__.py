"""
Configuration management for skm.

This module handles loading, validating, and saving configuration settings.
"""

from skm.config.settings import (
    BackupConfig,
    Settings,
    ensure_ssh_dir,
    load_config,
    save_config,
)
from skm.errors import ConfigurationError

__all__ = [
    "Settings",
    "BackupConfig",
    "load_config",
    "save_config",
    "ensure_ssh_dir",
    "ConfigurationError",
]
