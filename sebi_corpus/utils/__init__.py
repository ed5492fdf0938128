"""Shared utilities"""

from .logger import setup_logging

__all__ = ["setup_logging"]
