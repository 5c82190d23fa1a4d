"""Daily completion log: what each location finished refurbishing and when."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, List, Optional

from refurb_tracker.domain.models import CompletionDraft, DailyCompletion, SessionContext
from refurb_tracker.errors import QueryError, StoreError
from refurb_tracker.infrastructure.store import Filter, TableStore, eq, gte, lte
from refurb_tracker.tables import COMPLETIONS, RECORD_JOINS
from refurb_tracker.utils.logging import get_logger
from refurb_tracker.utils.time import local_today, utcnow

log = get_logger(__name__)


@dataclass(frozen=True)
class CompletionFilters:
    location_id: Optional[str] = None
    tech_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class CompletionLog:
    """
    Records and lists daily completions.

    Logging requires both QC confirmations (enforced by `CompletionDraft`);
    stored rows are read back as-is whatever their QC flags.
    """

    def __init__(
        self,
        store: TableStore,
        *,
        tz_name: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tz_name = tz_name
        self._clock = clock

    async def log_completion(
        self, session: SessionContext, draft: CompletionDraft, *, now: Optional[datetime] = None
    ) -> DailyCompletion:
        """Store a completion for the session's location and technician."""
        now = now or self._clock()
        values = {
            "location_id": session.location_id,
            "tech_id": session.tech_id,
            "category": draft.category,
            "instrument_type": draft.instrument_type,
            "brand": draft.brand,
            "quantity_completed": draft.quantity_completed,
            "yellow_armband_applied": draft.yellow_armband_applied,
            "qc_card_signed": draft.qc_card_signed,
            "notes": draft.notes,
            "completion_date": draft.completion_date or local_today(now, self._tz_name),
            "created_at": now,
        }
        try:
            row = await self._store.insert(COMPLETIONS, values)
        except StoreError as exc:
            raise QueryError(f"Completion could not be stored: {exc}") from exc
        log.info(
            "Completion logged",
            extra={
                "completion_id": row["id"],
                "location_id": session.location_id,
                "quantity": draft.quantity_completed,
                "instrument_type": draft.instrument_type,
            },
        )
        return DailyCompletion.model_validate(row)

    async def list_completions(
        self, filters: Optional[CompletionFilters] = None
    ) -> List[DailyCompletion]:
        """Completions newest day first, with location and technician joined."""
        filters = filters or CompletionFilters()
        clauses: List[Filter] = []
        if filters.location_id:
            clauses.append(eq("location_id", filters.location_id))
        if filters.tech_id:
            clauses.append(eq("tech_id", filters.tech_id))
        if filters.start_date:
            clauses.append(gte("completion_date", filters.start_date))
        if filters.end_date:
            clauses.append(lte("completion_date", filters.end_date))
        try:
            rows = await self._store.select(
                COMPLETIONS,
                filters=clauses,
                joins=RECORD_JOINS,
                order_by="completion_date",
                descending=True,
            )
        except StoreError as exc:
            raise QueryError(f"Failed to fetch completions: {exc}") from exc
        return [DailyCompletion.model_validate(row) for row in rows]


__all__ = ["CompletionFilters", "CompletionLog"]
