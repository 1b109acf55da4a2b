"""
Utility modules for the formula installer.
"""

from .logging import setup_logger, get_logger

__all__ = ["setup_logger", "get_logger"]
