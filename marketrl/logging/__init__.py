"""
marketrl Logging Module
=======================
Logging helpers shared by the training core.

Example:
    >>> from marketrl.logging import configure_logging, get_logger
    >>>
    >>> configure_logging(level="DEBUG")
    >>> logger = get_logger("marketrl.trainer")
    >>> logger.info("Trainer ready")
"""

from .core import (
    # Levels
    DEBUG,
    INFO,
    WARNING,
    ERROR,
    CRITICAL,
    set_level,
    # Formatters
    Formatter,
    JSONFormatter,
    StructuredFormatter,
    # Handlers
    StreamHandler,
    # Context
    ContextFilter,
    get_context,
    context,
    # Loggers
    get_logger,
    log_structured,
    configure_logging,
    # Utilities
    LogCapture,
)

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
