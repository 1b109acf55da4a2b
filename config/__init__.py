"""
Configuration for the formula installer.
"""

from .settings import Settings

__all__ = ["Settings"]
