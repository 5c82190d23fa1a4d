"""
Rolling-window capacity metrics.

Turns completion (or request) records into per-location totals for a short
and a long trailing window (7 and 30 days by default) and a per-category
breakdown over the long window. Window lower bounds are the start of the local
day N days before `now`, inclusive; the upper bound is the end of the local
day containing `now`, so future-dated records are not counted yet.

Every location appears in a window, with 0 when it has no records. A window
whose query failed raises `AggregationError`; it is never reported as zero.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from refurb_tracker.domain.catalog import CATEGORIES
from refurb_tracker.domain.models import Location
from refurb_tracker.errors import AggregationError, StoreError
from refurb_tracker.infrastructure.store import TableStore, gte, lte
from refurb_tracker.tables import COMPLETIONS, LOCATIONS, REQUESTS
from refurb_tracker.utils.logging import get_logger
from refurb_tracker.utils.time import end_of_local_day, start_of_day_ago, utcnow

log = get_logger(__name__)

UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class MetricsSource:
    """Which table/columns a metric is computed from."""

    table: str
    date_column: str
    quantity_column: str
    date_only: bool


COMPLETIONS_SOURCE = MetricsSource(COMPLETIONS, "completion_date", "quantity_completed", True)
REQUESTS_SOURCE = MetricsSource(REQUESTS, "created_at", "quantity_requested", False)


@dataclass(frozen=True)
class LocationTotal:
    location_id: str
    city: str
    store_number: str
    count: int


@dataclass(frozen=True)
class CategoryShare:
    category: str
    count: int
    percentage: float


@dataclass(frozen=True)
class WindowMetrics:
    days: int
    since: Union[date, datetime]
    totals: List[LocationTotal]

    @property
    def total(self) -> int:
        return sum(t.count for t in self.totals)

    def count_for(self, location_id: str) -> int:
        return next((t.count for t in self.totals if t.location_id == location_id), 0)


@dataclass(frozen=True)
class LocationSummary:
    location_id: str
    city: str
    store_number: str
    short_count: int
    long_count: int
    daily_average: float


@dataclass(frozen=True)
class CapacityReport:
    generated_at: datetime
    short: WindowMetrics
    long: WindowMetrics
    categories: List[CategoryShare] = field(default_factory=list)

    @property
    def category_total(self) -> int:
        return sum(c.count for c in self.categories)

    def summary(self) -> List[LocationSummary]:
        """One row per location with both window totals and the long-window daily average."""
        return [
            LocationSummary(
                location_id=t.location_id,
                city=t.city,
                store_number=t.store_number,
                short_count=self.short.count_for(t.location_id),
                long_count=t.count,
                daily_average=t.count / self.long.days,
            )
            for t in self.long.totals
        ]


def aggregate_by_location(
    locations: Sequence[Location],
    rows: Iterable[Mapping[str, Any]],
    quantity_column: str = "quantity_completed",
) -> List[LocationTotal]:
    """
    Sum `quantity_column` per location, keeping locations with no rows at 0.

    Output follows the order of `locations`.
    """
    counts: Dict[str, int] = {}
    for row in rows:
        location_id = row["location_id"]
        counts[location_id] = counts.get(location_id, 0) + int(row[quantity_column] or 0)

    known = {loc.id for loc in locations}
    orphans = set(counts) - known
    if orphans:
        log.warning(
            "Metric rows reference unknown locations",
            extra={"location_ids": sorted(orphans)},
        )

    return [
        LocationTotal(
            location_id=loc.id,
            city=loc.city,
            store_number=loc.store_number,
            count=counts.get(loc.id, 0),
        )
        for loc in locations
    ]


def category_breakdown(
    rows: Iterable[Mapping[str, Any]],
    quantity_column: str = "quantity_completed",
    categories: Sequence[str] = CATEGORIES,
) -> List[CategoryShare]:
    """
    Sum `quantity_column` per category, sorted by sum descending.

    Catalog categories are always listed (ties keep catalog order); any other
    category found in the rows is appended. Percentages are of the grand total
    and are all 0 when the total is 0.
    """
    counts: Dict[str, int] = {c: 0 for c in categories}
    for row in rows:
        category = row.get("category") or UNCATEGORIZED
        counts[category] = counts.get(category, 0) + int(row[quantity_column] or 0)

    total = sum(counts.values())
    shares = [
        CategoryShare(
            category=category,
            count=count,
            percentage=(count / total * 100.0) if total > 0 else 0.0,
        )
        for category, count in counts.items()
    ]
    return sorted(shares, key=lambda s: s.count, reverse=True)


class MetricsAggregator:
    """
    Computes capacity metrics from the table store.

    Parameters
    ----------
    store : TableStore
        Backing table store.
    source : MetricsSource
        Completions (default) or requests.
    tz_name : str
        Deployment timezone for "start of day".
    short_days, long_days : int
        Trailing window lengths.
    clock : callable
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        store: TableStore,
        *,
        source: MetricsSource = COMPLETIONS_SOURCE,
        tz_name: str = "UTC",
        short_days: int = 7,
        long_days: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self.source = source
        self._tz_name = tz_name
        self.short_days = short_days
        self.long_days = long_days
        self._clock = clock

    def window_start(self, now: datetime, days: int) -> Union[date, datetime]:
        since = start_of_day_ago(now, days, self._tz_name)
        return since.date() if self.source.date_only else since

    def window_end(self, now: datetime) -> Union[date, datetime]:
        until = end_of_local_day(now, self._tz_name)
        return until.date() if self.source.date_only else until

    async def _locations(self) -> List[Location]:
        rows = await self._store.select(LOCATIONS, order_by="city")
        return [Location.model_validate(row) for row in rows]

    async def _window_rows(
        self, since: Union[date, datetime], until: Union[date, datetime]
    ) -> List[Dict[str, Any]]:
        return await self._store.select(
            self.source.table,
            columns=("location_id", "category", self.source.quantity_column),
            filters=[
                gte(self.source.date_column, since),
                lte(self.source.date_column, until),
            ],
        )

    async def location_totals(self, days: int, *, now: Optional[datetime] = None) -> WindowMetrics:
        """Per-location totals for a single trailing window."""
        now = now or self._clock()
        since = self.window_start(now, days)
        try:
            locations, rows = await asyncio.gather(
                self._locations(), self._window_rows(since, self.window_end(now))
            )
        except StoreError as exc:
            raise AggregationError(f"{days}-day window could not be fetched: {exc}") from exc
        return WindowMetrics(
            days=days,
            since=since,
            totals=aggregate_by_location(locations, rows, self.source.quantity_column),
        )

    async def categories(self, *, now: Optional[datetime] = None) -> List[CategoryShare]:
        """Category breakdown over the long window."""
        now = now or self._clock()
        try:
            rows = await self._window_rows(
                self.window_start(now, self.long_days), self.window_end(now)
            )
        except StoreError as exc:
            raise AggregationError(
                f"{self.long_days}-day window could not be fetched: {exc}"
            ) from exc
        return category_breakdown(rows, self.source.quantity_column)

    async def collect(self, *, now: Optional[datetime] = None) -> CapacityReport:
        """
        Build the full capacity report.

        Locations and both windows are fetched concurrently; if any of the three
        queries fails the whole report fails with `AggregationError`.
        """
        now = now or self._clock()
        short_since = self.window_start(now, self.short_days)
        long_since = self.window_start(now, self.long_days)
        until = self.window_end(now)
        labels = ("locations", f"{self.short_days}-day window", f"{self.long_days}-day window")

        results = await asyncio.gather(
            self._locations(),
            self._window_rows(short_since, until),
            self._window_rows(long_since, until),
            return_exceptions=True,
        )
        failures = [
            (label, result)
            for label, result in zip(labels, results)
            if isinstance(result, BaseException)
        ]
        if failures:
            label, error = failures[0]
            log.error(
                "Capacity metrics failed",
                extra={"failed": [name for name, _ in failures], "error": str(error)},
            )
            raise AggregationError(f"{label} could not be fetched: {error}") from error

        locations, short_rows, long_rows = results
        quantity = self.source.quantity_column
        return CapacityReport(
            generated_at=now,
            short=WindowMetrics(
                self.short_days, short_since, aggregate_by_location(locations, short_rows, quantity)
            ),
            long=WindowMetrics(
                self.long_days, long_since, aggregate_by_location(locations, long_rows, quantity)
            ),
            categories=category_breakdown(long_rows, quantity),
        )


__all__ = [
    "COMPLETIONS_SOURCE",
    "CapacityReport",
    "CategoryShare",
    "LocationSummary",
    "LocationTotal",
    "MetricsAggregator",
    "MetricsSource",
    "REQUESTS_SOURCE",
    "WindowMetrics",
    "aggregate_by_location",
    "category_breakdown",
]
