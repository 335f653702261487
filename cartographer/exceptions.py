"""Cartographer Exception Hierarchy.

Exception taxonomy for the fog-of-war core with rich error context for
debugging and monitoring.

Exception Hierarchy:
    CartographerException (base)
    ├── ValidationError
    │   ├── InvalidBoundsError
    │   └── GeometryValidationError
    ├── OperationFailure
    ├── SourceUnavailable
    │   └── RepositoryTimeout
    └── ResourceExhaustion

Expected failures never cross the public surface of the engine: geometry
operations, index queries and fog calculations report them through their
result objects (``errors``, ``had_errors``, ``fallback_used``). These
exceptions are used internally to move between fallback tiers and are
raised to callers only for programmer errors (malformed bounds passed to
``ViewportBounds.parse``).

Example:
    >>> from cartographer.exceptions import InvalidBoundsError
    >>> raise InvalidBoundsError(
    ...     message="min_lon must be less than max_lon",
    ...     component="ViewportBounds",
    ...     context={"bounds": [-122.5, 37.8, -122.5, 37.7]},
    ... )

Author: Cartographer Team
Date: October 2026
Status: Production Ready
"""

import json
import re
import traceback as tb
from datetime import datetime
from typing import Any, Dict, Optional


# ==============================================================================
# Base Exception
# ==============================================================================

class CartographerException(Exception):
    """Base exception for all Cartographer errors.

    Attributes:
        message: Human-readable error message
        error_code: Unique error identifier (e.g., "CARTO_SOURCE_UNAVAILABLE")
        component: Name of the component that raised the error (optional)
        context: Dictionary with error-specific details
        timestamp: When the error occurred
        traceback_str: Stack at the point of construction
    """

    ERROR_PREFIX = "CARTO"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception with rich context.

        Args:
            message: Human-readable error message
            error_code: Unique error identifier (auto-generated if not provided)
            component: Name of the component that raised the error
            context: Dictionary with error-specific details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self._generate_error_code()
        self.component = component
        self.context = context or {}
        self.timestamp = datetime.now()
        self.traceback_str = "".join(tb.format_stack()[:-1])

    def _generate_error_code(self) -> str:
        """Generate an error code from the exception class name.

        Returns:
            Error code like "CARTO_SOURCE_UNAVAILABLE"
        """
        error_type = re.sub(r"(?<!^)(?=[A-Z])", "_", self.__class__.__name__).upper()
        return f"{self.ERROR_PREFIX}_{error_type}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "component": self.component,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "traceback": self.traceback_str,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def __str__(self) -> str:
        parts = [f"[{self.error_code}]"]
        if self.component:
            parts.append(f"Component: {self.component}")
        parts.append(self.message)
        return " - ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message='{self.message}', "
            f"error_code='{self.error_code}', "
            f"component='{self.component}')"
        )


# ==============================================================================
# Validation
# ==============================================================================

class ValidationError(CartographerException):
    """Malformed geometry or bounds.

    Recoverable: every geometry operation maps it to a documented fallback.
    """

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        errors: Optional[list] = None,
    ):
        if errors:
            context = context or {}
            context["errors"] = list(errors)
        super().__init__(message, component=component, context=context)


class InvalidBoundsError(ValidationError):
    """Viewport bounds are inverted, degenerate, non-finite or out of range."""


class GeometryValidationError(ValidationError):
    """A geometry failed structural validation."""


# ==============================================================================
# Operational failures
# ==============================================================================

class OperationFailure(CartographerException):
    """A geometry primitive could not compute an exact result.

    Example:
        >>> raise OperationFailure(
        ...     message="difference produced an invalid geometry",
        ...     component="geometry_operations",
        ...     context={"operation": "difference"},
        ... )
    """


class SourceUnavailable(CartographerException):
    """The repository or index could not supply revealed areas.

    Triggers the next fallback tier of the fog calculator.
    """


class RepositoryTimeout(SourceUnavailable):
    """A repository call did not complete within its time budget."""

    def __init__(
        self,
        message: str,
        timeout_seconds: float,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        context["timeout_seconds"] = timeout_seconds
        super().__init__(message, component=component, context=context)
        self.timeout_seconds = timeout_seconds


class ResourceExhaustion(CartographerException):
    """Spatial index memory estimate is over its configured threshold."""


# ==============================================================================
# Utilities
# ==============================================================================

def format_exception_chain(exc: Exception) -> str:
    """Format exception chain for logging/display.

    Args:
        exc: Exception to format

    Returns:
        Formatted string with full exception chain
    """
    lines = []
    current = exc

    while current is not None:
        if isinstance(current, CartographerException):
            lines.append(str(current))
            lines.append(f"  Context: {current.context}")
        else:
            lines.append(f"{type(current).__name__}: {current}")
        current = getattr(current, "__cause__", None)

    return "\n".join(lines)


__all__ = [
    "CartographerException",
    "ValidationError",
    "InvalidBoundsError",
    "GeometryValidationError",
    "OperationFailure",
    "SourceUnavailable",
    "RepositoryTimeout",
    "ResourceExhaustion",
    "format_exception_chain",
]
