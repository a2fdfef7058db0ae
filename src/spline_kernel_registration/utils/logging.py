"""
Logging Utilities

This module sets up logging for the project. Every module creates its
logger with ``setup_logger(__name__)``; applications call
``configure_logging`` once with the values from the YAML configuration.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER_NAME = "spline_kernel_registration"

_CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
_FILE_FORMAT = '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s'
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown logging level: {level}")
        return resolved
    return level


def setup_logger(name: str,
                 level: Union[int, str] = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Loggers below the package root only get a level and propagate to the
    root package logger, which owns the handlers.

    Args:
        name: Logger name (usually __name__)
        level: Logging level, as int or name (default: logging.INFO)
        log_file: Optional log file path. If provided, logs will also be written to this file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if name != PACKAGE_LOGGER_NAME and name.startswith(PACKAGE_LOGGER_NAME + "."):
        setup_logger(PACKAGE_LOGGER_NAME, level=level, log_file=log_file)
        return logger

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    logger.setLevel(_resolve_level(level))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        _add_file_handler(logger, log_file)

    return logger


def _add_file_handler(logger: logging.Logger, log_file: str) -> None:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(file_handler)


def configure_logging(level: Union[int, str] = logging.INFO,
                      log_file: Optional[str] = None) -> logging.Logger:
    """
    Apply a level (and optionally a log file) to the package root logger.

    Args:
        level: Logging level for the whole package
        log_file: Optional path of an additional log file

    Returns:
        The package root logger
    """
    root = setup_logger(PACKAGE_LOGGER_NAME)
    root.setLevel(_resolve_level(level))

    if log_file:
        target = str(Path(log_file).resolve())
        already = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == target
            for h in root.handlers
        )
        if not already:
            _add_file_handler(root, log_file)

    return root
