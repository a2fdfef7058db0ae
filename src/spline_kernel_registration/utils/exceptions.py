"""
Exception hierarchy for spline kernel registration.

All custom exceptions inherit from SplineKernelError so callers can catch
every configuration failure of a transform in one place, while the
standard base classes (ValueError, ArithmeticError) keep them compatible
with generic handlers.
"""

from __future__ import annotations

from typing import Any, Optional


class SplineKernelError(Exception):
    """Base exception for all spline kernel registration errors.

    Args:
        message: Human readable description of the failure
        component: Label of the component that failed (e.g. "Transform0")
        value: The offending value, reported in the diagnostic
    """

    def __init__(self, message: str, *, component: Optional[str] = None, value: Any = None):
        self.component = component
        self.value = value
        self.reason = message
        super().__init__(self._compose(message))

    def _compose(self, message: str) -> str:
        text = message
        if self.value is not None:
            text = f"{text} (value: {self.value!r})"
        if self.component:
            text = f"{self.component}: {text}"
        return text

    def with_component(self, component: str) -> "SplineKernelError":
        """Return a copy of this error labelled with ``component``."""
        return type(self)(self.reason, component=component, value=self.value)


class ConfigurationError(SplineKernelError, ValueError):
    """Raised for unknown kernel types, missing landmark paths or missing
    required fields in a transform parameter record."""

    pass


class FileFormatError(SplineKernelError, ValueError):
    """Raised when a landmark point file is malformed."""

    pass


class MissingGeometryError(SplineKernelError, ValueError):
    """Raised when index landmarks are given without grid geometry."""

    pass


class DimensionMismatchError(SplineKernelError, ValueError):
    """Raised when landmark counts, dimensions or parameter vector lengths
    do not agree."""

    pass


class NumericalError(SplineKernelError, ArithmeticError):
    """Raised when the kernel system cannot be inverted with the chosen
    method."""

    pass
