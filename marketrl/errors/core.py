"""
Error Handling Module for marketrl.

This module provides the exception hierarchy raised inside the training core:
- A base error carrying a code, details and a timestamp
- Shape mismatches in sampled batches
- Divergent (non-finite) gradients
- Invalid configuration values
- An error context for tagging the operation that failed

None of these are fatal to the process. The trainer catches them at the
update-cycle boundary and reports them as skip reasons.
"""

from __future__ import annotations

import traceback
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context variable for error context
_error_context: ContextVar[Optional["ErrorContext"]] = ContextVar(
    "error_context", default=None
)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class MarketRLError(Exception):
    """Base exception for all marketrl errors.

    Attributes:
        message: Error message
        code: Error code for categorization
        details: Additional error details
        context: Error context information
        timestamp: When the error occurred
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        context: Optional["ErrorContext"] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.context = context or _error_context.get()
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.traceback_str = traceback.format_exc() if cause else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        return {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context.to_dict() if self.context else None,
            "traceback": self.traceback_str,
        }

    def __str__(self) -> str:
        parts = [f"[{self.code}] {self.message}"]
        if self.details:
            parts.append(f"Details: {self.details}")
        if self.context:
            parts.append(f"Context: {self.context.operation_name}")
        return " | ".join(parts)


class ShapeMismatchError(MarketRLError):
    """Raised when batch contents disagree with the configured architecture.

    Covers state vectors of the wrong length and action indices outside
    ``[0, action_dim)``. The update cycle that hit it is aborted whole.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        details.update({"field": field, "expected": expected, "actual": actual})
        super().__init__(message, code="SHAPE_MISMATCH", details=details, **kwargs)


class DivergentGradientError(MarketRLError):
    """Raised when a gradient set has a non-finite global norm."""

    def __init__(
        self,
        message: str,
        network: Optional[str] = None,
        norm: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        details.update({"network": network, "norm": norm})
        super().__init__(
            message, code="DIVERGENT_GRADIENT", details=details, **kwargs
        )
        self.network = network


class InvalidTransitionError(MarketRLError):
    """Raised when a transition offered to the store holds NaN or inf values."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        details.update({"field": field})
        super().__init__(
            message, code="INVALID_TRANSITION", details=details, **kwargs
        )


class ConfigurationError(MarketRLError):
    """Error related to configuration operations.

    Raised when there are issues with:
    - Config loading
    - Config parsing
    - Invalid configuration values
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_file: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        details.update({"config_key": config_key, "config_file": config_file})
        super().__init__(message, code="CONFIG_ERROR", details=details, **kwargs)


# =============================================================================
# ERROR CONTEXT
# =============================================================================


@dataclass
class ErrorContext:
    """Context information for errors.

    Attributes:
        operation_id: Unique identifier for the operation
        operation_name: Name of the operation being performed
        component: Component where the error occurred
        metadata: Additional context metadata
    """

    operation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    operation_name: Optional[str] = None
    component: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "operation_id": self.operation_id,
            "operation_name": self.operation_name,
            "component": self.component,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }

    def __enter__(self) -> ErrorContext:
        """Enter context manager."""
        self._token = _error_context.set(self)
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        _error_context.reset(self._token)


def get_error_context() -> Optional[ErrorContext]:
    """Return the error context active in the current execution context."""
    return _error_context.get()


__all__ = [
    "MarketRLError",
    "ShapeMismatchError",
    "DivergentGradientError",
    "InvalidTransitionError",
    "ConfigurationError",
    "ErrorContext",
    "get_error_context",
]
