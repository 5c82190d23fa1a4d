"""Table names and the joins used to build request/completion views."""

from __future__ import annotations

from refurb_tracker.infrastructure.store import Join

LOCATIONS = "locations"
TECHNICIANS = "technicians"
REQUESTS = "refurb_requests"
COMPLETIONS = "daily_completions"
ACTIVITY_LOG = "activity_log"

LOCATION_JOIN = Join("location", LOCATIONS, "location_id")
TECHNICIAN_JOIN = Join("technician", TECHNICIANS, "tech_id")
RECORD_JOINS = (LOCATION_JOIN, TECHNICIAN_JOIN)

__all__ = [
    "ACTIVITY_LOG",
    "COMPLETIONS",
    "LOCATIONS",
    "LOCATION_JOIN",
    "RECORD_JOINS",
    "REQUESTS",
    "TECHNICIANS",
    "TECHNICIAN_JOIN",
]
