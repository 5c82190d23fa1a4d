"""
Utilities package for the refurb tracker.

Exports shared helpers for logging and time handling. Keep this package
lightweight and free of lifecycle-specific logic.
"""

from refurb_tracker.utils.logging import configure_logging, get_logger
from refurb_tracker.utils.time import local_today, start_of_day_ago, to_local

__all__ = [
    "configure_logging",
    "get_logger",
    "local_today",
    "start_of_day_ago",
    "to_local",
]
