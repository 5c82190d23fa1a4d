"""
Refurb Tracker - lifecycle engine for instrument refurbishment requests.

Store locations request refurbishment work from a central hub; this package
tracks each request through a configurable lifecycle:

- Human-readable request codes scoped to a store and day
- Two lifecycle variants (six-state shipping, four-state fulfillment) built on
  one abstract state machine, with an append-only activity log
- Read-time auto-escalation of shipped requests once delivery is due
- Rolling 7/30-day capacity metrics per location and per category
- Change notifications for live views, backed by PostgreSQL LISTEN/NOTIFY
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from refurb_tracker.config import Settings, get_settings
from refurb_tracker.errors import (
    AggregationError,
    CodeCollisionError,
    QueryError,
    RefurbError,
    RejectedTransition,
    RequestNotFound,
    StaleStateError,
    TransitionError,
)
from refurb_tracker.lifecycle import (
    FULFILLMENT_LIFECYCLE,
    SHIPPING_LIFECYCLE,
    LifecycleDefinition,
    available_lifecycles,
    resolve_lifecycle,
)
from refurb_tracker.metrics import MetricsAggregator
from refurb_tracker.notifier import ChangeNotifier
from refurb_tracker.request_store import RequestFilters, RequestStore
from refurb_tracker.service import RefurbService, open_service
from refurb_tracker.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Lifecycle
    "FULFILLMENT_LIFECYCLE",
    "LifecycleDefinition",
    "SHIPPING_LIFECYCLE",
    "available_lifecycles",
    "resolve_lifecycle",
    # Engine
    "ChangeNotifier",
    "MetricsAggregator",
    "RefurbService",
    "RequestFilters",
    "RequestStore",
    "open_service",
    # Errors
    "AggregationError",
    "CodeCollisionError",
    "QueryError",
    "RefurbError",
    "RejectedTransition",
    "RequestNotFound",
    "StaleStateError",
    "TransitionError",
    # Logging
    "configure_logging",
    "get_logger",
]
