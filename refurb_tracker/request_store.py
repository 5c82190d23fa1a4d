"""
Request store: the lifecycle engine's entry point for callers.

Composes the request-code generator, the active `LifecycleDefinition`, and the
auto-escalation rule over a `TableStore`:

- `list_requests` (filtered, newest first) and `get_request` return joined
  records after reconciling and persisting any due escalations;
- `submit` creates a request in the definition's initial state;
- `transition` (and the named helpers built on it) validates a move with the
  definition and writes it together with its audit entry.

Technician-scoped operations take an explicit `SessionContext`; the store never
looks at ambient session state.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from refurb_tracker.domain.models import (
    ActivityLogEntry,
    RefurbRequest,
    RequestDraft,
    SessionContext,
)
from refurb_tracker.errors import (
    QueryError,
    RejectedTransition,
    RequestNotFound,
    StaleStateError,
    StoreError,
    TransitionError,
)
from refurb_tracker.identifiers import RequestCodeGenerator
from refurb_tracker.infrastructure.store import Filter, TableStore, eq, in_
from refurb_tracker.lifecycle.abstract import (
    Actor,
    LifecycleDefinition,
    TransitionOutcome,
    TransitionWarning,
    action_for,
)
from refurb_tracker.lifecycle.escalation import persist, reconcile
from refurb_tracker.lifecycle.persistence import apply_transition
from refurb_tracker.tables import ACTIVITY_LOG, RECORD_JOINS, REQUESTS
from refurb_tracker.utils.logging import get_logger
from refurb_tracker.utils.time import utcnow

log = get_logger(__name__)


@dataclass(frozen=True)
class RequestFilters:
    """
    Query scope for `list_requests`.

    `exclude_terminal` drops requests in the definition's terminal states
    (e.g. Picked Up). `search` is a case-insensitive substring match over the
    request code, instrument type, technician name and location city.
    """

    location_id: Optional[str] = None
    tech_id: Optional[str] = None
    status: Optional[str] = None
    exclude_terminal: bool = False
    search: Optional[str] = None

    @classmethod
    def for_session(cls, session: SessionContext, **kwargs: Any) -> "RequestFilters":
        return cls(location_id=session.location_id, **kwargs)


@dataclass(frozen=True)
class TransitionResult:
    request: RefurbRequest
    outcome: TransitionOutcome

    @property
    def warnings(self) -> Tuple[TransitionWarning, ...]:
        return self.outcome.warnings

    @property
    def quantity_mismatch(self) -> bool:
        return self.outcome.has_warning("quantity_mismatch")


def matches_search(request: RefurbRequest, term: str) -> bool:
    needle = term.strip().lower()
    if not needle:
        return True
    haystack = [request.human_request_code, request.instrument.instrument_type]
    if request.technician is not None:
        haystack.append(request.technician.name)
    if request.location is not None:
        haystack.append(request.location.city)
    return any(needle in value.lower() for value in haystack if value)


class RequestStore:
    """
    Lifecycle-aware access to refurbishment requests.

    Parameters
    ----------
    store : TableStore
        Backing table store.
    definition : LifecycleDefinition
        The lifecycle variant in force for this deployment.
    tz_name : str
        Deployment timezone, used for request-code days and escalation dates.
    code_attempts : int
        Insert attempts per submission when request codes collide.
    clock : callable
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        store: TableStore,
        definition: LifecycleDefinition,
        *,
        tz_name: str = "UTC",
        code_attempts: int = 2,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self.definition = definition
        self._tz_name = tz_name
        self._clock = clock
        self.codes = RequestCodeGenerator(store, tz_name=tz_name, attempts=code_attempts)

    # ------------------------------------------------------------------ reads

    def _to_records(self, rows: Sequence[Mapping[str, Any]]) -> List[RefurbRequest]:
        try:
            records = [RefurbRequest.model_validate(row) for row in rows]
        except ValidationError as exc:
            raise QueryError(f"Store returned a malformed request row: {exc}") from exc
        for record in records:
            if not self.definition.is_state(record.status):
                log.warning(
                    "Request has a status outside the active lifecycle",
                    extra={"request_id": record.id, "status": record.status},
                )
                continue
            missing = self.definition.missing_timestamps(record)
            if missing:
                log.warning(
                    "Request timestamps are inconsistent with its status",
                    extra={"request_id": record.id, "status": record.status, "missing": missing},
                )
        return records

    def _filters(self, filters: RequestFilters) -> List[Filter]:
        clauses: List[Filter] = []
        if filters.location_id:
            clauses.append(eq("location_id", filters.location_id))
        if filters.tech_id:
            clauses.append(eq("tech_id", filters.tech_id))
        if filters.status:
            if not self.definition.is_state(filters.status):
                raise QueryError(
                    f"Unknown status '{filters.status}' for the {self.definition.name} lifecycle"
                )
            rule = self.definition.escalation
            if rule is not None and filters.status == rule.target:
                # Due rows still stored in the source state read as the target.
                clauses.append(in_("status", (rule.source, rule.target)))
            else:
                clauses.append(eq("status", filters.status))
        if filters.exclude_terminal:
            clauses.append(in_("status", self.definition.open_states))
        return clauses

    async def _escalate(
        self, records: List[RefurbRequest], now: datetime
    ) -> List[RefurbRequest]:
        """
        Apply and persist due escalations before records are handed back.

        A failed escalation write fails the read with `QueryError`; the caller
        never receives a view that the store does not hold.
        """
        records, writes = reconcile(records, now, self.definition, self._tz_name)
        try:
            await persist(self._store, writes)
        except StoreError as exc:
            raise QueryError(f"Failed to persist auto-escalation: {exc}") from exc
        return records

    async def list_requests(
        self, filters: Optional[RequestFilters] = None, *, now: Optional[datetime] = None
    ) -> List[RefurbRequest]:
        """
        Fetch requests (newest first) with location and technician joined.

        Due escalations are written back before this returns, so callers never
        see a stale `Shipped` that has already arrived.
        """
        filters = filters or RequestFilters()
        now = now or self._clock()
        try:
            rows = await self._store.select(
                REQUESTS,
                filters=self._filters(filters),
                joins=RECORD_JOINS,
                order_by="created_at",
                descending=True,
            )
        except StoreError as exc:
            raise QueryError(f"Failed to fetch requests: {exc}") from exc

        records = await self._escalate(self._to_records(rows), now)

        if filters.status:
            records = [r for r in records if r.status == filters.status]
        if filters.search:
            records = [r for r in records if matches_search(r, filters.search)]
        return records

    async def get_request(
        self, request_id: str, *, now: Optional[datetime] = None
    ) -> RefurbRequest:
        """
        Fetch one request with joined location and technician.

        Applies the same read-time escalation as `list_requests`, so a due
        `Shipped` request is returned (and stored) as `Received`.
        """
        now = now or self._clock()
        try:
            rows = await self._store.select(
                REQUESTS, filters=[eq("id", request_id)], joins=RECORD_JOINS, limit=1
            )
        except StoreError as exc:
            raise QueryError(f"Failed to fetch request '{request_id}': {exc}") from exc
        if not rows:
            raise RequestNotFound(request_id)
        (record,) = await self._escalate(self._to_records(rows), now)
        return record

    async def activity(self, request_id: str) -> List[ActivityLogEntry]:
        """Audit trail of one request, oldest first."""
        try:
            rows = await self._store.select(
                ACTIVITY_LOG, filters=[eq("request_id", request_id)], order_by="created_at"
            )
        except StoreError as exc:
            raise QueryError(f"Failed to fetch activity for '{request_id}': {exc}") from exc
        return [ActivityLogEntry.model_validate(row) for row in rows]

    async def status_counts(self) -> Optional[Dict[str, int]]:
        """
        Number of requests per status, for dashboard cards.

        This is a background refresh: failures are logged and reported as None
        rather than raised.
        """
        states = self.definition.states
        try:
            counts = await asyncio.gather(
                *(self._store.count(REQUESTS, filters=[eq("status", s)]) for s in states)
            )
        except Exception:  # noqa: BLE001 - a stats refresh must not break the view
            log.exception("Failed to refresh status counts")
            return None
        return dict(zip(states, counts))

    # ----------------------------------------------------------------- writes

    async def submit(
        self, session: SessionContext, draft: RequestDraft, *, now: Optional[datetime] = None
    ) -> RefurbRequest:
        """
        Create a request for the session's location and technician.

        The request code is assigned here; a collision with a concurrently
        issued code is retried with a fresh count before surfacing.
        """
        now = now or self._clock()
        outcome = self.definition.attempt_transition(
            None,
            self.definition.initial_state,
            draft.model_dump(),
            actor=Actor.TECHNICIAN,
            now=now,
        )
        row_values: Dict[str, Any] = {
            "location_id": session.location_id,
            "tech_id": session.tech_id,
            "category": draft.resolved_category,
            "instrument_type": draft.instrument_type,
            "brand": draft.brand,
            "quantity_requested": draft.quantity,
            "priority": draft.priority.value if draft.priority else None,
            "notes": draft.notes,
            **outcome.changes,
        }

        async def insert(code: str) -> Dict[str, Any]:
            async with self._store.transaction() as tx:
                row = await tx.insert(REQUESTS, {**row_values, "human_request_code": code})
                await tx.insert(
                    ACTIVITY_LOG,
                    {
                        "request_id": row["id"],
                        "action": action_for(outcome.new_state),
                        "details": {**outcome.details, "human_request_code": code},
                        "performed_by": session.tech_name,
                        "created_at": now,
                    },
                )
                return row

        try:
            row = await self.codes.insert_with_code(session.store_number, now, insert)
        except StoreError as exc:
            raise TransitionError(f"Request could not be stored: {exc}") from exc

        log.info(
            "Request submitted",
            extra={
                "request_id": row["id"],
                "code": row["human_request_code"],
                "location_id": session.location_id,
                "tech_id": session.tech_id,
            },
        )
        return await self.get_request(row["id"], now=now)

    async def transition(
        self,
        request_id: str,
        target: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        actor: Actor,
        performed_by: str,
        session: Optional[SessionContext] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Move a request to `target`.

        Raises
        ------
        RequestNotFound
            If the request does not exist.
        RejectedTransition
            If the move is not legal for the current state, actor or payload,
            or a technician acts on another location's request.
        StaleStateError
            If the request changed status while this write was in flight.
        TransitionError
            If the store rejected the write.
        """
        now = now or self._clock()
        request = await self.get_request(request_id, now=now)
        if session is not None and request.location_id != session.location_id:
            raise RejectedTransition(
                request.status, target, "request belongs to another location"
            )

        outcome = self.definition.attempt_transition(
            request.status, target, payload, actor=actor, now=now, request=request
        )
        try:
            row = await apply_transition(self._store, request_id, outcome, performed_by)
        except StoreError as exc:
            raise TransitionError(f"Transition to {target} failed: {exc}") from exc
        if row is None:
            raise StaleStateError(request_id, request.status)

        for warning in outcome.warnings:
            log.warning(
                warning.message,
                extra={"request_id": request_id, "warning": warning.code},
            )
        log.info(
            "Request transitioned",
            extra={
                "request_id": request_id,
                "from_state": outcome.previous_state,
                "to_state": outcome.new_state,
                "performed_by": performed_by,
            },
        )
        updated = RefurbRequest.model_validate(row).model_copy(
            update={"location": request.location, "technician": request.technician}
        )
        return TransitionResult(request=updated, outcome=outcome)

    # Shipping lifecycle helpers

    async def ship(
        self, request_id: str, expected_delivery: date, *, performed_by: str
    ) -> TransitionResult:
        return await self.transition(
            request_id,
            "Shipped",
            {"expected_delivery": expected_delivery},
            actor=Actor.HUB_OPERATOR,
            performed_by=performed_by,
        )

    async def start_work(self, session: SessionContext, request_id: str) -> TransitionResult:
        return await self.transition(
            request_id,
            "In Progress",
            actor=Actor.TECHNICIAN,
            performed_by=session.tech_name,
            session=session,
        )

    async def complete_work(self, session: SessionContext, request_id: str) -> TransitionResult:
        return await self.transition(
            request_id,
            "Complete",
            actor=Actor.TECHNICIAN,
            performed_by=session.tech_name,
            session=session,
        )

    async def confirm_pickup(self, request_id: str, *, performed_by: str) -> TransitionResult:
        return await self.transition(
            request_id, "Picked Up", actor=Actor.HUB_OPERATOR, performed_by=performed_by
        )

    # Fulfillment lifecycle helpers

    async def begin_fulfillment(self, request_id: str, *, performed_by: str) -> TransitionResult:
        return await self.transition(
            request_id, "In Progress", actor=Actor.HUB_OPERATOR, performed_by=performed_by
        )

    async def fulfill(
        self,
        request_id: str,
        quantity_fulfilled: int,
        fulfilled_by: str,
        notes: Optional[str] = None,
        *,
        performed_by: Optional[str] = None,
    ) -> TransitionResult:
        payload: Dict[str, Any] = {
            "quantity_fulfilled": quantity_fulfilled,
            "fulfilled_by": fulfilled_by,
        }
        if notes:
            payload["fulfillment_notes"] = notes
        return await self.transition(
            request_id,
            "Fulfilled",
            payload,
            actor=Actor.HUB_OPERATOR,
            performed_by=performed_by or fulfilled_by,
        )

    async def cancel(
        self, request_id: str, reason: Optional[str] = None, *, performed_by: str
    ) -> TransitionResult:
        return await self.transition(
            request_id,
            "Cancelled",
            {"reason": reason} if reason else {},
            actor=Actor.HUB_OPERATOR,
            performed_by=performed_by,
        )


__all__ = ["RequestFilters", "RequestStore", "TransitionResult", "matches_search"]
