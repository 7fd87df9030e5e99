"""
scrapecore utilities module.
"""

from scrapecore.utils.config import Settings, get_settings, get_project_root, load_settings
from scrapecore.utils.errors import ErrorKind, ScrapeError, classify, is_retryable
from scrapecore.utils.logging import (
    get_logger,
    configure_logging,
    LogContext,
)
from scrapecore.utils.periodic import PeriodicTask

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "get_project_root",
    "load_settings",
    # Errors
    "ErrorKind",
    "ScrapeError",
    "classify",
    "is_retryable",
    # Logging
    "get_logger",
    "configure_logging",
    "LogContext",
    # Background tasks
    "PeriodicTask",
]
