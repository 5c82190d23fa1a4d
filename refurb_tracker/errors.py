"""
Error taxonomy for the refurb tracker.

Storage adapters raise `StoreError`; the request store translates those into
`QueryError` for reads and the `TransitionError` family for writes so callers
only ever handle domain errors. `AggregationError` is raised when a metrics
window could not be fetched, instead of reporting it as zero.
"""

from __future__ import annotations

from typing import Optional


class RefurbError(Exception):
    """Base class for all refurb tracker errors."""


class StoreError(RefurbError):
    """The backing store rejected an operation or could not be reached."""


class DuplicateKeyError(StoreError):
    """A write violated a uniqueness constraint."""

    def __init__(self, message: str, constraint: Optional[str] = None) -> None:
        super().__init__(message)
        self.constraint = constraint


class QueryError(RefurbError):
    """A read failed (store unreachable or malformed filter)."""


class RequestNotFound(QueryError, LookupError):
    """No request exists with the given id."""

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Request '{request_id}' not found")
        self.request_id = request_id


class TransitionError(RefurbError):
    """A lifecycle write was rejected or failed."""


class RejectedTransition(TransitionError):
    """
    The requested transition is not legal from the current state.

    Raised for non-adjacent moves, the wrong actor, or a missing/invalid payload.
    """

    def __init__(self, current: Optional[str], requested: str, reason: str) -> None:
        origin = current if current is not None else "(new)"
        super().__init__(f"Cannot move request from {origin} to {requested}: {reason}")
        self.current = current
        self.requested = requested
        self.reason = reason


class StaleStateError(TransitionError):
    """The request changed status between the read and the conditional write."""

    def __init__(self, request_id: str, expected: str) -> None:
        super().__init__(
            f"Request '{request_id}' is no longer in status {expected}; reload and retry"
        )
        self.request_id = request_id
        self.expected = expected


class CodeCollisionError(TransitionError):
    """A request code kept colliding after every recount attempt."""

    def __init__(self, code: str, attempts: int) -> None:
        super().__init__(f"Request code {code} collided after {attempts} attempt(s)")
        self.code = code
        self.attempts = attempts


class AggregationError(RefurbError):
    """A metrics window could not be computed."""


__all__ = [
    "AggregationError",
    "CodeCollisionError",
    "DuplicateKeyError",
    "QueryError",
    "RefurbError",
    "RejectedTransition",
    "RequestNotFound",
    "StaleStateError",
    "StoreError",
    "TransitionError",
]
