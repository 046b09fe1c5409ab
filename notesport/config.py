"""
Configuration management for notesport.

This module handles loading and accessing configuration values from config.yaml.
Missing files and unreadable YAML fall back to built-in defaults, and values
present in the file are merged over those defaults.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError
from .models import ConflictStrategy, ExportFormat, JsonMode


DEFAULT_CONFIG: Dict[str, Any] = {
    "database": {
        "filename": "notesport.db"
    },
    "paths": {
        "export_dir": "export",
        "log_file": "notesport.log"
    },
    "transfer": {
        "default_folder": "Notes",
        "decode_workers": 2,
        "conflict_strategy": "ask"
    },
    "export": {
        "format": "markdown",
        "json_mode": "minimal",
        "include_frontmatter": True,
        "copy_attachments": False
    },
    "bridge": {
        "account": None,
        "timeout": 60
    },
    "versioning": {
        "auto_commit": False,
        "commit_message": "Export {count} notes on {timestamp}"
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    }
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    Manages configuration loading and access for notesport.
    """

    def __init__(self, config_path: str = "config.yaml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            logging.debug(f"Configuration file not found: {self.config_path}; using defaults")
            self._config = self._get_default_config()
            return

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError("top level must be a mapping")
            self._config = _merge(self._get_default_config(), loaded)
            logging.info(f"Configuration loaded from {self.config_path}")

        except (OSError, ValueError, yaml.YAMLError) as e:
            logging.error(f"Failed to load configuration: {e}")
            # Fall back to default configuration
            self._config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values as fallback."""
        return copy.deepcopy(DEFAULT_CONFIG)

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "export.format")
            default: Default value if key is not found

        Returns:
            The configuration value

        Examples:
            config.get("transfer.default_folder")  # Returns "Notes"
            config.get("export.json_mode")  # Returns "minimal"
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section.

        Args:
            section: Name of the configuration section

        Returns:
            Dictionary containing the section configuration
        """
        return self._config.get(section, {})

    def set(self, key_path: str, value: Any) -> None:
        """Override one value in memory, e.g. from a command-line flag."""
        keys = key_path.split('.')
        target = self._config
        for key in keys[:-1]:
            target = target.setdefault(key, {})
        target[keys[-1]] = value

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    # Convenience properties for commonly used values

    @property
    def database_filename(self) -> str:
        """Get snapshot database filename."""
        return self.get("database.filename", "notesport.db")

    @property
    def export_directory(self) -> str:
        """Get default export directory."""
        return self.get("paths.export_dir", "export")

    @property
    def log_filename(self) -> str:
        """Get log file name."""
        return self.get("paths.log_file", "notesport.log")

    @property
    def default_folder(self) -> str:
        """Get the folder used when an import names none."""
        return self.get("transfer.default_folder", "Notes")

    @property
    def decode_workers(self) -> int:
        """Get the size of the export prefetch pool; 1 or less disables prefetch."""
        value = self.get("transfer.decode_workers", 2)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"transfer.decode_workers must be an integer, got {value!r}") from e

    @property
    def conflict_strategy(self) -> ConflictStrategy:
        return self._choice("transfer.conflict_strategy", ConflictStrategy, ConflictStrategy.ASK)

    @property
    def export_format(self) -> ExportFormat:
        return self._choice("export.format", ExportFormat, ExportFormat.MARKDOWN)

    @property
    def json_mode(self) -> JsonMode:
        return self._choice("export.json_mode", JsonMode, JsonMode.MINIMAL)

    @property
    def include_frontmatter(self) -> bool:
        return bool(self.get("export.include_frontmatter", True))

    @property
    def copy_attachments(self) -> bool:
        return bool(self.get("export.copy_attachments", False))

    @property
    def bridge_account(self) -> Optional[str]:
        return self.get("bridge.account")

    @property
    def bridge_timeout(self) -> Optional[float]:
        """Seconds one osascript call may take; null in the file waits forever."""
        timeout = self.get("bridge.timeout", 60)
        return None if timeout is None else float(timeout)

    @property
    def auto_commit(self) -> bool:
        """Whether each export is committed to git in the export directory."""
        return bool(self.get("versioning.auto_commit", False))

    @property
    def commit_message(self) -> str:
        return self.get("versioning.commit_message", "Export {count} notes on {timestamp}")

    def _choice(self, key_path: str, enum_type, default):
        value = self.get(key_path, default.value)
        try:
            return enum_type(value)
        except ValueError as e:
            allowed = ", ".join(member.value for member in enum_type)
            raise ConfigurationError(f"{key_path} must be one of: {allowed} (got {value!r})") from e


# Global configuration instance
config = ConfigManager()


def get_config() -> ConfigManager:
    """
    Get the global configuration instance.

    Returns:
        The global ConfigManager instance
    """
    return config
