"""Logging configuration for dispatchbulk."""

import json
import logging
import logging.handlers
import os
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

ROOT_LOGGER_NAME = "dispatchbulk"


class LogLevel(str, Enum):
    """Log levels for configuration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    SIMPLE = "simple"
    DETAILED = "detailed"
    JSON = "json"


@dataclass
class LoggingConfig:
    """Configuration for the logging system."""

    level: LogLevel = LogLevel.INFO
    format_type: LogFormat = LogFormat.DETAILED
    enable_console_logging: bool = True
    log_file: Optional[str] = None
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_colors: bool = True
    sensitive_data_patterns: List[str] = field(default_factory=lambda: [r"password", r"token"])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        """Create logging configuration from the ``logging`` config section."""
        return cls(
            level=LogLevel(str(data.get("level", "INFO")).upper()),
            format_type=LogFormat(str(data.get("format", "detailed")).lower()),
            log_file=data.get("file"),
            console_colors=bool(data.get("colors", True)),
        )


class SensitiveDataFilter(logging.Filter):
    """Filter to redact sensitive data from log messages."""

    def __init__(self, patterns: List[str]) -> None:
        super().__init__()
        self.compiled_patterns = [
            re.compile(rf"({pattern})\s*[=:]\s*\S+", re.IGNORECASE) for pattern in patterns
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        # Modifies the record, never drops it
        if isinstance(record.msg, str):
            for pattern in self.compiled_patterns:
                record.msg = pattern.sub(r"\1=[REDACTED]", record.msg)
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    STANDARD_ATTRS = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "exc_info",
        "exc_text",
        "stack_info",
        "taskName",
        "message",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_data = {}
        for key, value in record.__dict__.items():
            if key in self.STANDARD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                extra_data[key] = value
            except (TypeError, ValueError):
                extra_data[key] = str(value)
        if extra_data:
            log_data["extra"] = extra_data

        return json.dumps(log_data, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Console formatter with color support."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and self._supports_color()

    def _supports_color(self) -> bool:
        return (
            hasattr(sys.stderr, "isatty")
            and sys.stderr.isatty()
            and os.environ.get("TERM") != "dumb"
        )

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            reset = self.COLORS["RESET"]
            formatted = (
                f"{color}[{timestamp}] {record.levelname:<8}{reset} - "
                f"{record.name} - {record.getMessage()}"
            )
        else:
            formatted = f"[{timestamp}] {record.levelname:<8} - {record.name} - {record.getMessage()}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


def _build_formatter(config: LoggingConfig) -> logging.Formatter:
    if config.format_type == LogFormat.JSON:
        return StructuredFormatter()
    if config.format_type == LogFormat.SIMPLE:
        return logging.Formatter("%(levelname)s: %(message)s")
    if config.console_colors:
        return ColoredConsoleFormatter()
    return logging.Formatter(
        "[%(asctime)s] %(levelname)-8s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """Configure the ``dispatchbulk`` logger hierarchy.

    Calling it again replaces the handlers installed by a previous call.

    Args:
        config: Logging configuration, defaults to :class:`LoggingConfig`

    Returns:
        The configured package logger
    """
    config = config or LoggingConfig()
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, config.level.value))

    for handler in list(root_logger.handlers):
        if getattr(handler, "_dispatchbulk_handler", False):
            root_logger.removeHandler(handler)
            handler.close()

    handlers: List[logging.Handler] = []
    if config.enable_console_logging:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(_build_formatter(config))
        handlers.append(console_handler)

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path),
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(StructuredFormatter())
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(getattr(logging, config.level.value))
        if config.sensitive_data_patterns:
            handler.addFilter(SensitiveDataFilter(config.sensitive_data_patterns))
        handler._dispatchbulk_handler = True
        root_logger.addHandler(handler)

    return root_logger
