"""Exceptions raised by mapflow.

Every error that signals bad input also subclasses ``ValueError`` so callers
can keep catching the builtin type.
"""

from typing import Any, Optional


class MapflowError(Exception):
    """Base exception for mapflow errors."""

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize mapflow error.

        Args:
            message: Primary error message.
            suggestion: Optional hint on how to fix the problem.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class CRSError(MapflowError, ValueError):
    """Missing, mismatched or unsuitable coordinate reference system."""

    pass


class GeometryValidationError(MapflowError, ValueError):
    """Geometries failed validation."""

    pass


class UnsupportedFormatError(MapflowError, ValueError):
    """File suffix has no reader or writer."""

    pass


class ParameterError(MapflowError, ValueError):
    """Invalid argument value."""

    pass


class ConfigError(MapflowError, ValueError):
    """Configuration file or override is invalid."""

    pass


def format_parameter_error(
    parameter_name: str,
    value: Any,
    valid_values: Optional[list[str]] = None,
) -> str:
    """Format a standardized parameter error message.

    Args:
        parameter_name: Name of the invalid parameter.
        value: Invalid value that was provided.
        valid_values: List of valid values (optional).

    Returns:
        Formatted error message string.
    """
    message = f"Invalid value for parameter '{parameter_name}': {value!r}"
    if valid_values:
        message += f". Valid values: {', '.join(map(str, valid_values))}"
    return message
