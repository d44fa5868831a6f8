"""Configuration utilities for dispatchbulk."""

import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".dispatchbulk"
CONFIG_FILE_YAML = CONFIG_DIR / "config.yaml"
CONFIG_ENV_VAR = "DISPATCHBULK_CONFIG"

# Default bulk engine configuration
DEFAULT_BULK_CONFIG = {
    "batch_size": 50,
    "max_concurrent": 3,  # operations allowed to run batches at once
    "reject_when_busy": False,  # False queues extra starts, True rejects them
    "history_limit": 100,
    "max_errors": 100,  # error records kept per operation
    "batch_delay_seconds": 0.01,
    "date_delay_seconds": 0.1,
    "assigned_by": "bulk-operation",
    "updated_by": "bulk-operation",
    "created_by": "template",
    "default_route_status": "inactive",
}

# Default template configuration
DEFAULT_TEMPLATE_CONFIG = {
    "storage_directory": "~/.dispatchbulk/templates",
    "default_format": "yaml",
}

# Default logging configuration
DEFAULT_LOGGING_CONFIG = {
    "level": "INFO",
    "format": "detailed",
    "file": None,
}


class Config:
    """Manages dispatchbulk configuration stored as YAML."""

    def __init__(self, config_file: Optional[Path] = None):
        """Initialize the configuration manager.

        Args:
            config_file: Explicit config path; falls back to ``$DISPATCHBULK_CONFIG``
                and then ``~/.dispatchbulk/config.yaml``
        """
        if config_file is None:
            env_path = os.environ.get(CONFIG_ENV_VAR)
            config_file = Path(env_path) if env_path else CONFIG_FILE_YAML
        self.config_file = Path(config_file).expanduser()
        self.config_data: Dict[str, Any] = {}
        self._config_loaded = False

    def _ensure_config_loaded(self):
        if not self._config_loaded:
            self._load_config()
            self._config_loaded = True

    def reload_config(self):
        """Force reload configuration from file."""
        self._config_loaded = False
        self._ensure_config_loaded()

    def _load_config(self):
        if not self.config_file.exists():
            self.config_data = {}
            return

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Configuration file {self.config_file} is not valid YAML: {e}"
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file {self.config_file} must contain a mapping"
            )
        self.config_data = data
        logger.debug(f"Loaded configuration from {self.config_file}")

    def save_config(self):
        """Save the configuration to the YAML file."""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            yaml.dump(self.config_data, f, default_flow_style=False, indent=2, sort_keys=False)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value with dot notation support.

        Args:
            key: Configuration key (supports dot notation like "bulk.batch_size")
            default: Default value if key doesn't exist

        Returns:
            Configuration value
        """
        self._ensure_config_loaded()

        value: Any = self.config_data
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def set(self, key: str, value: Any):
        """Set a top-level configuration value and persist it."""
        self._ensure_config_loaded()
        self.config_data[key] = value
        self.save_config()

    def _section(self, name: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        merged = copy.deepcopy(defaults)
        section = self.get(name, {}) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
        merged.update(section)
        return merged

    def get_bulk_config(self) -> Dict[str, Any]:
        """Get bulk engine configuration merged over the defaults."""
        return self._section("bulk", DEFAULT_BULK_CONFIG)

    def get_template_config(self) -> Dict[str, Any]:
        """Get template configuration merged over the defaults."""
        config = self._section("templates", DEFAULT_TEMPLATE_CONFIG)
        config["storage_directory"] = str(Path(config["storage_directory"]).expanduser())
        return config

    def get_logging_config(self) -> Dict[str, Any]:
        """Get logging configuration merged over the defaults."""
        return self._section("logging", DEFAULT_LOGGING_CONFIG)


@dataclass
class BulkSettings:
    """Validated bulk engine settings."""

    batch_size: int = DEFAULT_BULK_CONFIG["batch_size"]
    max_concurrent: int = DEFAULT_BULK_CONFIG["max_concurrent"]
    reject_when_busy: bool = DEFAULT_BULK_CONFIG["reject_when_busy"]
    history_limit: int = DEFAULT_BULK_CONFIG["history_limit"]
    max_errors: int = DEFAULT_BULK_CONFIG["max_errors"]
    batch_delay_seconds: float = DEFAULT_BULK_CONFIG["batch_delay_seconds"]
    date_delay_seconds: float = DEFAULT_BULK_CONFIG["date_delay_seconds"]
    assigned_by: str = DEFAULT_BULK_CONFIG["assigned_by"]
    updated_by: str = DEFAULT_BULK_CONFIG["updated_by"]
    created_by: str = DEFAULT_BULK_CONFIG["created_by"]
    default_route_status: str = DEFAULT_BULK_CONFIG["default_route_status"]

    def __post_init__(self):
        """Validate settings."""
        for name in ("batch_size", "max_concurrent", "history_limit"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigurationError(f"'{name}' must be a positive integer, got {value!r}")
        if not isinstance(self.max_errors, int) or self.max_errors < 0:
            raise ConfigurationError(
                f"'max_errors' must be a non-negative integer, got {self.max_errors!r}"
            )
        for name in ("batch_delay_seconds", "date_delay_seconds"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"'{name}' cannot be negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BulkSettings":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        unknown = set(data) - set(known)
        if unknown:
            logger.warning(f"Ignoring unknown bulk settings: {', '.join(sorted(unknown))}")
        return cls(**known)

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "BulkSettings":
        """Build settings from the ``bulk`` section of a :class:`Config`."""
        config = config or Config()
        return cls.from_dict(config.get_bulk_config())
