"""
Utility Functions Module

This module provides common utilities used across the package.
- Logging setup
- Typed configuration and YAML loading
- Exception hierarchy
"""

from .logging import setup_logger, configure_logging
from .config import AppConfig, load_config
from .exceptions import (
    SplineKernelError,
    ConfigurationError,
    FileFormatError,
    MissingGeometryError,
    DimensionMismatchError,
    NumericalError,
)

__all__ = [
    "setup_logger",
    "configure_logging",
    "AppConfig",
    "load_config",
    "SplineKernelError",
    "ConfigurationError",
    "FileFormatError",
    "MissingGeometryError",
    "DimensionMismatchError",
    "NumericalError",
]
