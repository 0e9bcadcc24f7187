"""Utility modules for docklink."""

from .logging import setup_logging

__all__ = [
    "setup_logging",
]
