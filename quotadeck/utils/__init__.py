"""Utility functions for QuotaDeck."""

from .browser import open_browser
from .log import log_with_timestamp
from .settings import SettingsManager

__all__ = [
    "log_with_timestamp",
    "open_browser",
    "SettingsManager",
]
