"""
marketrl Errors Module
======================
Exception hierarchy for the training core.

Example:
    >>> from marketrl.errors import ShapeMismatchError
    >>> try:
    ...     raise ShapeMismatchError("bad state", field="state", expected=8, actual=7)
    ... except ShapeMismatchError as e:
    ...     print(e.code)
    SHAPE_MISMATCH
"""

from .core import (
    MarketRLError,
    ShapeMismatchError,
    DivergentGradientError,
    InvalidTransitionError,
    ConfigurationError,
    ErrorContext,
    get_error_context,
)

__all__ = [
    "MarketRLError",
    "ShapeMismatchError",
    "DivergentGradientError",
    "InvalidTransitionError",
    "ConfigurationError",
    "ErrorContext",
    "get_error_context",
]
