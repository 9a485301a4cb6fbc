"""
Configuration settings management for skm.

This module handles loading, validating, and saving configuration settings
from YAML files with support for environment variable overrides.

Configuration is loaded from ~/.skm/config.yaml by default, with the path
overridable via the SKM_CONFIG environment variable. A missing file is not
an error; defaults apply.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from skm.backup.merge import MergeStrategy
from skm.crypto.encryption import MAX_KDF_ITERATIONS, PBKDF2_ITERATIONS
from skm.errors import ConfigurationError
from skm.fileio import FilePermissions, default_permissions

# Default configuration directory (also where exports go by default)
DEFAULT_CONFIG_DIR = Path.home() / ".skm"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_SSH_DIR = Path.home() / ".ssh"

MIN_KDF_ITERATIONS = 100_000


@dataclass
class BackupConfig:
    """Backup and import settings."""

    kdf_iterations: int = PBKDF2_ITERATIONS
    default_strategy: str = MergeStrategy.SKIP_EXISTING.value
    min_passphrase_length: int = 8

    @property
    def strategy(self) -> MergeStrategy:
        return MergeStrategy.parse(self.default_strategy)


@dataclass
class Settings:
    """
    Complete skm configuration settings.

    Attributes:
        ssh_dir: Directory holding the managed key pairs.
        export_dir: Default directory for new backups.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        backup: Backup and import settings.
    """

    ssh_dir: str = str(DEFAULT_SSH_DIR)
    export_dir: str = str(DEFAULT_CONFIG_DIR)
    log_level: str = "INFO"

    backup: BackupConfig = field(default_factory=BackupConfig)


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from SKM_CONFIG environment variable if set,
    otherwise returns the default path (~/.skm/config.yaml).
    """
    env_path = os.environ.get("SKM_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses SKM_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(_settings_to_dict(settings), f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def ensure_ssh_dir(settings: Settings, permissions: FilePermissions | None = None) -> Path:
    """
    Create the key directory with owner-only permissions if it is missing.

    Returns:
        The key directory path.

    Raises:
        ConfigurationError: If the directory cannot be created.
    """
    ssh_dir = Path(settings.ssh_dir).expanduser()
    if ssh_dir.exists():
        if not ssh_dir.is_dir():
            raise ConfigurationError(f"SSH directory is not a directory: {ssh_dir}")
        return ssh_dir

    permissions = permissions or default_permissions()
    try:
        ssh_dir.mkdir(parents=True)
        permissions.restrict_directory(ssh_dir)
    except OSError as e:
        raise ConfigurationError(f"Cannot create SSH directory {ssh_dir}: {e}") from e
    return ssh_dir


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    skm_data = data.get("skm", {}) or {}

    if "ssh_dir" in skm_data:
        settings.ssh_dir = str(skm_data["ssh_dir"])
    if "export_dir" in skm_data:
        settings.export_dir = str(skm_data["export_dir"])
    if "log_level" in skm_data:
        settings.log_level = str(skm_data["log_level"]).upper()

    backup = data.get("backup", {}) or {}
    try:
        if "kdf_iterations" in backup:
            settings.backup.kdf_iterations = int(backup["kdf_iterations"])
        if "default_strategy" in backup:
            settings.backup.default_strategy = str(backup["default_strategy"]).lower()
        if "min_passphrase_length" in backup:
            settings.backup.min_passphrase_length = int(backup["min_passphrase_length"])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid backup setting: {e}") from e

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "SKM_SSH_DIR": ("ssh_dir", str),
        "SKM_EXPORT_DIR": ("export_dir", str),
        "SKM_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "SKM_KDF_ITERATIONS": ("backup.kdf_iterations", int),
        "SKM_DEFAULT_STRATEGY": ("backup.default_strategy", lambda x: x.lower()),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                _set_nested_attr(settings, attr_path, converter(value))
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value!r}") from e

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    if settings.backup.kdf_iterations < MIN_KDF_ITERATIONS:
        raise ConfigurationError(
            f"kdf_iterations must be at least {MIN_KDF_ITERATIONS:,}"
        )
    if settings.backup.kdf_iterations > MAX_KDF_ITERATIONS:
        raise ConfigurationError(
            f"kdf_iterations must be at most {MAX_KDF_ITERATIONS:,}"
        )

    try:
        MergeStrategy.parse(settings.backup.default_strategy)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    if settings.backup.min_passphrase_length < 1:
        raise ConfigurationError("min_passphrase_length must be at least 1")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "skm": {
            "ssh_dir": settings.ssh_dir,
            "export_dir": settings.export_dir,
            "log_level": settings.log_level,
        },
        "backup": {
            "kdf_iterations": settings.backup.kdf_iterations,
            "default_strategy": settings.backup.default_strategy,
            "min_passphrase_length": settings.backup.min_passphrase_length,
        },
    }
