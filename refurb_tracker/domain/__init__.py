"""
Domain package for the refurb tracker.

Exports the record models and the instrument catalog used across the
lifecycle engine, request store, and metrics. Keep this package focused on
data definitions and validation concerns.
"""

from refurb_tracker.domain.catalog import BRANDS, CATEGORIES, INSTRUMENT_DATA, category_for
from refurb_tracker.domain.models import (
    ActivityLogEntry,
    CompletionDraft,
    DailyCompletion,
    InstrumentDescriptor,
    Location,
    Priority,
    RefurbRequest,
    RequestDraft,
    SessionContext,
    Technician,
)

__all__ = [
    "ActivityLogEntry",
    "BRANDS",
    "CATEGORIES",
    "CompletionDraft",
    "DailyCompletion",
    "INSTRUMENT_DATA",
    "InstrumentDescriptor",
    "Location",
    "Priority",
    "RefurbRequest",
    "RequestDraft",
    "SessionContext",
    "Technician",
    "category_for",
]
