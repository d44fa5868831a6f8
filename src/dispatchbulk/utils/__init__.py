"""Shared utilities: configuration and logging."""

from .config import Config, BulkSettings
from .logging_config import LoggingConfig, setup_logging

__all__ = ["Config", "BulkSettings", "LoggingConfig", "setup_logging"]
