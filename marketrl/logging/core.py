"""
marketrl Logging Module
=======================
Thin layer over the standard library ``logging`` package used by every
marketrl component.

Features:
- Level helpers accepting names or numbers
- Plain, JSON and structured key=value formatters
- A context variable whose keys are stamped onto every record
- One-call configuration for scripts and notebooks
- A capture helper for asserting on log output in tests
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


# ============================================================================
# LEVELS
# ============================================================================

DEBUG = logging.DEBUG
INFO = logging.INFO
WARNING = logging.WARNING
ERROR = logging.ERROR
CRITICAL = logging.CRITICAL

_LEVEL_NAMES = {
    "DEBUG": DEBUG,
    "INFO": INFO,
    "WARNING": WARNING,
    "ERROR": ERROR,
    "CRITICAL": CRITICAL,
}


def _resolve_level(level: Union[int, str], default: int = INFO) -> int:
    if isinstance(level, str):
        return _LEVEL_NAMES.get(level.upper(), default)
    return level


def set_level(logger: Union[str, logging.Logger], level: Union[int, str]) -> None:
    """Set the logging level for a logger.

    Args:
        logger: Logger name or logger instance
        level: Logging level (int or string name)
    """
    if isinstance(logger, str):
        logger = logging.getLogger(logger)
    logger.setLevel(_resolve_level(level))


# ============================================================================
# FORMATTERS
# ============================================================================


class Formatter(logging.Formatter):
    """Standard formatter with the package's default layout."""

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
    ):
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt=fmt, datefmt=datefmt)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(
        self,
        fields: Optional[List[str]] = None,
        timestamp_field: str = "timestamp",
    ):
        super().__init__()
        self.fields = fields or ["name", "levelname", "message", "funcName"]
        self.timestamp_field = timestamp_field

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        log_data = {}

        for name in self.fields:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        log_data[self.timestamp_field] = datetime.fromtimestamp(
            record.created
        ).isoformat()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        structured = getattr(record, "structured", None)
        if structured:
            log_data.update(structured)

        return json.dumps(log_data, default=str)


class StructuredFormatter(logging.Formatter):
    """Formatter for structured text output with key=value pairs."""

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        separator: str = " | ",
        kv_separator: str = "=",
    ):
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s"
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.separator = separator
        self.kv_separator = kv_separator

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        parts = [base, record.getMessage()]

        structured = getattr(record, "structured", None)
        if structured:
            parts.extend(f"{k}{self.kv_separator}{v}" for k, v in structured.items())

        if record.exc_info:
            parts.append(
                f"exception{self.kv_separator}{self.formatException(record.exc_info)}"
            )

        return self.separator.join(parts)


# ============================================================================
# HANDLERS
# ============================================================================


class StreamHandler(logging.StreamHandler):
    """Standard stream handler with formatter support."""

    def __init__(
        self,
        stream: Any = sys.stderr,
        formatter: Optional[logging.Formatter] = None,
        level: Union[int, str] = DEBUG,
    ):
        super().__init__(stream)
        if formatter:
            self.setFormatter(formatter)
        self.setLevel(_resolve_level(level, DEBUG))


# ============================================================================
# CONTEXT
# ============================================================================

_context_var: ContextVar[Dict[str, Any]] = ContextVar("logging_context", default={})


class ContextFilter(logging.Filter):
    """Filter that adds context information to log records."""

    def __init__(self, context_dict: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.context_dict = context_dict or {}

    def filter(self, record: logging.LogRecord) -> bool:
        merged = {**self.context_dict, **_context_var.get({})}
        for key, value in merged.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def get_context() -> Dict[str, Any]:
    """Get the current logging context."""
    return _context_var.get({}).copy()


@contextmanager
def context(**kwargs):
    """Context manager for temporary logging context.

    Example:
        >>> with context(cycle=12):
        ...     logger.info("Running update cycle")
    """
    token = _context_var.set({**_context_var.get({}), **kwargs})
    try:
        yield
    finally:
        _context_var.reset(token)


# ============================================================================
# LOGGERS
# ============================================================================


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger by name (None returns root logger)."""
    if name:
        return logging.getLogger(name)
    return logging.getLogger()


def log_structured(
    logger: logging.Logger, level: int, message: str, **fields: Any
) -> None:
    """Log ``message`` with ``fields`` attached as structured data."""
    logger.log(level, message, extra={"structured": fields})


def configure_logging(
    level: Union[int, str] = INFO,
    format_string: Optional[str] = None,
    date_format: Optional[str] = None,
    handlers: Optional[List[logging.Handler]] = None,
    logger_name: str = "marketrl",
) -> logging.Logger:
    """Configure the package logger.

    Args:
        level: Default logging level
        format_string: Log format string
        date_format: Date format string
        handlers: List of handlers to use (defaults to a stdout handler)
        logger_name: Logger to configure, ``"marketrl"`` by default

    Returns:
        The configured logger
    """
    level = _resolve_level(level)

    if date_format is None:
        date_format = "%Y-%m-%d %H:%M:%S"

    if handlers is None:
        console_handler = StreamHandler(
            stream=sys.stdout,
            formatter=StructuredFormatter(fmt=format_string, datefmt=date_format),
            level=level,
        )
        handlers = [console_handler]

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    for handler in handlers:
        handler.addFilter(ContextFilter())
        logger.addHandler(handler)

    return logger


# ============================================================================
# UTILITIES
# ============================================================================


class LogCapture:
    """Context manager to capture log output."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        level: int = DEBUG,
    ):
        self.logger = logger or logging.getLogger()
        self.level = level
        self.records: List[logging.LogRecord] = []
        self._handler: Optional[logging.Handler] = None
        self._previous_level: Optional[int] = None

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def __enter__(self):
        self._handler = logging.Handler()
        self._handler.emit = self.emit
        self._handler.setLevel(self.level)
        self._previous_level = self.logger.level
        if self.logger.getEffectiveLevel() > self.level:
            self.logger.setLevel(self.level)
        self.logger.addHandler(self._handler)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._handler:
            self.logger.removeHandler(self._handler)
        if self._previous_level is not None:
            self.logger.setLevel(self._previous_level)

    def get_messages(self) -> List[str]:
        """Get list of log messages."""
        return [r.getMessage() for r in self.records]

    def contains(self, text: str) -> bool:
        """Check if any message contains text."""
        return any(text in msg for msg in self.get_messages())


__all__ = [
    "DEBUG",
    "INFO",
    "WARNING",
    "ERROR",
    "CRITICAL",
    "set_level",
    "Formatter",
    "JSONFormatter",
    "StructuredFormatter",
    "StreamHandler",
    "ContextFilter",
    "get_context",
    "context",
    "get_logger",
    "log_structured",
    "configure_logging",
    "LogCapture",
]
