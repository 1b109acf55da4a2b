"""
Logging configuration and utilities.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(name: str,
                 log_file: Optional[Path] = None,
                 level: Optional[str] = None,
                 format_string: Optional[str] = None,
                 max_bytes: int = 10 * 1024 * 1024,
                 backup_count: int = 5) -> logging.Logger:
    """
    Set up a logger with console and optional file handlers.

    When the root logger is already configured the named logger only
    propagates to it, so records are never emitted twice.

    Args:
        name: Logger name
        log_file: Optional log file path
        level: Logging level; inherited from the root logger when None
        format_string: Log format string
        max_bytes: Rotation size for the file handler
        backup_count: Rotated files to keep

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)

    if level:
        logger.setLevel(getattr(logging, level.upper()))

    # Avoid duplicate handlers
    if logger.handlers or logging.getLogger().handlers:
        return logger

    formatter = logging.Formatter(format_string or DEFAULT_FORMAT)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler if specified
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)


def setup_root_logger(log_file: Optional[Path] = None,
                      level: str = "INFO",
                      format_string: Optional[str] = None,
                      max_bytes: int = 10 * 1024 * 1024,
                      backup_count: int = 5):
    """
    Set up the root logger for the application.

    Args:
        log_file: Optional log file path
        level: Logging level
        format_string: Log format; includes the source location when None
        max_bytes: Rotation size for the file handler
        backup_count: Rotated files to keep
    """
    root_logger = logging.getLogger()

    # Clear any existing handlers
    root_logger.handlers.clear()

    root_logger.setLevel(getattr(logging, level.upper()))

    # Format with more detail
    formatter = logging.Formatter(
        format_string or
        "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
    )

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Set levels for noisy loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
