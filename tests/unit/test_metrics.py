from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from refurb_tracker.domain.models import Location
from refurb_tracker.errors import AggregationError
from refurb_tracker.metrics import (
    REQUESTS_SOURCE,
    MetricsAggregator,
    aggregate_by_location,
    category_breakdown,
)
from refurb_tracker.tables import COMPLETIONS, LOCATIONS, REQUESTS

NOW = datetime(2026, 1, 31, 18, 0, tzinfo=timezone.utc)


def _complete(store, location, category, instrument, quantity, day):
    return store.add(
        COMPLETIONS,
        location_id=location["id"],
        tech_id="tech-1",
        category=category,
        instrument_type=instrument,
        brand="Yamaha",
        quantity_completed=quantity,
        yellow_armband_applied=True,
        qc_card_signed=True,
        completion_date=day,
    )


@pytest.fixture
def history(store, locations):
    meridian, biloxi = locations["Meridian"], locations["Biloxi"]
    _complete(store, meridian, "Brass", "Trumpet", 4, date(2026, 1, 30))
    _complete(store, meridian, "Strings", "Violin", 2, date(2026, 1, 24))  # window start: inclusive
    _complete(store, biloxi, "Brass", "Trombone", 3, date(2026, 1, 20))
    _complete(store, biloxi, "Woodwinds", "Flute", 1, date(2026, 1, 1))  # exactly 30 days back
    _complete(store, biloxi, "Woodwinds", "Flute", 9, date(2025, 12, 31))  # outside both windows
    return store


@pytest.mark.asyncio
async def test_windows_include_every_location(history, clock) -> None:
    metrics = MetricsAggregator(history)

    report = await metrics.collect(now=NOW)

    short = {t.city: t.count for t in report.short.totals}
    long = {t.city: t.count for t in report.long.totals}
    assert short == {"Biloxi": 0, "Flowood": 0, "Meridian": 6}
    assert long == {"Biloxi": 4, "Flowood": 0, "Meridian": 6}
    assert report.short.since == date(2026, 1, 24)
    assert report.long.since == date(2026, 1, 1)


@pytest.mark.asyncio
async def test_per_location_sum_equals_unfiltered_total(history) -> None:
    report = await MetricsAggregator(history).collect(now=NOW)

    unfiltered = sum(
        r["quantity_completed"]
        for r in history.tables[COMPLETIONS]
        if r["completion_date"] >= report.long.since
    )
    assert report.long.total == unfiltered
    assert report.category_total == unfiltered


@pytest.mark.asyncio
async def test_category_breakdown_sorted_with_percentages(history) -> None:
    report = await MetricsAggregator(history).collect(now=NOW)

    assert [(c.category, c.count) for c in report.categories] == [
        ("Brass", 7),
        ("Strings", 2),
        ("Woodwinds", 1),
    ]
    assert sum(c.percentage for c in report.categories) == pytest.approx(100.0)
    assert report.categories[0].percentage == pytest.approx(70.0)


def test_empty_breakdown_is_all_zero() -> None:
    shares = category_breakdown([])
    assert [s.category for s in shares] == ["Brass", "Woodwinds", "Strings"]
    assert all(s.count == 0 and s.percentage == 0.0 for s in shares)


def test_breakdown_keeps_unknown_categories() -> None:
    shares = category_breakdown(
        [
            {"category": "Percussion", "quantity_completed": 2},
            {"category": None, "quantity_completed": 1},
        ]
    )
    counts = {s.category: s.count for s in shares}
    assert counts["Percussion"] == 2
    assert counts["Uncategorized"] == 1
    assert sum(s.percentage for s in shares) == pytest.approx(100.0)


def test_aggregate_ignores_rows_for_unknown_locations(store, locations) -> None:
    ordered = sorted(locations.values(), key=lambda loc: loc["city"])

    totals = aggregate_by_location(
        [Location.model_validate(loc) for loc in ordered],
        [
            {"location_id": locations["Biloxi"]["id"], "quantity_completed": 2},
            {"location_id": "gone", "quantity_completed": 5},
        ],
    )
    assert [(t.city, t.count) for t in totals] == [("Biloxi", 2), ("Flowood", 0), ("Meridian", 0)]


@pytest.mark.asyncio
async def test_location_summary_daily_average(history) -> None:
    report = await MetricsAggregator(history).collect(now=NOW)

    summary = {row.city: row for row in report.summary()}
    assert summary["Meridian"].short_count == 6
    assert summary["Meridian"].long_count == 6
    assert summary["Meridian"].daily_average == pytest.approx(6 / 30)
    assert summary["Flowood"].daily_average == 0


@pytest.mark.asyncio
async def test_failed_window_raises_instead_of_zero_fill(history) -> None:
    history.fail_tables.add(COMPLETIONS)
    metrics = MetricsAggregator(history)

    with pytest.raises(AggregationError):
        await metrics.collect(now=NOW)
    with pytest.raises(AggregationError):
        await metrics.location_totals(7, now=NOW)
    with pytest.raises(AggregationError):
        await metrics.categories(now=NOW)


@pytest.mark.asyncio
async def test_failed_locations_raise(history) -> None:
    history.fail_tables.add(LOCATIONS)
    with pytest.raises(AggregationError, match="locations"):
        await MetricsAggregator(history).collect(now=NOW)


@pytest.mark.asyncio
async def test_request_source_uses_created_at(store, locations) -> None:
    store.add(
        REQUESTS,
        location_id=locations["Meridian"]["id"],
        category="Brass",
        quantity_requested=3,
        created_at=datetime(2026, 1, 30, 9, 0, tzinfo=timezone.utc),
    )
    store.add(
        REQUESTS,
        location_id=locations["Meridian"]["id"],
        category="Brass",
        quantity_requested=8,
        created_at=datetime(2025, 12, 1, 9, 0, tzinfo=timezone.utc),
    )

    window = await MetricsAggregator(store, source=REQUESTS_SOURCE).location_totals(7, now=NOW)

    assert window.count_for(locations["Meridian"]["id"]) == 3
    assert window.since == datetime(2026, 1, 24, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_future_dated_records_are_not_counted(store, locations) -> None:
    flowood = locations["Flowood"]
    _complete(store, flowood, "Brass", "Tuba", 2, date(2026, 1, 31))
    _complete(store, flowood, "Brass", "Tuba", 5, date(2026, 2, 1))

    report = await MetricsAggregator(store).collect(now=NOW)

    assert report.short.count_for(flowood["id"]) == 2
    assert report.long.count_for(flowood["id"]) == 2
    assert report.category_total == 2


@pytest.mark.asyncio
async def test_request_source_stops_at_end_of_local_day(store, locations) -> None:
    meridian = locations["Meridian"]
    for hour, quantity in ((23, 1), (25, 4)):
        store.add(
            REQUESTS,
            location_id=meridian["id"],
            category="Strings",
            quantity_requested=quantity,
            created_at=datetime(2026, 1, 31, tzinfo=timezone.utc) + timedelta(hours=hour),
        )

    window = await MetricsAggregator(store, source=REQUESTS_SOURCE).location_totals(7, now=NOW)

    assert window.count_for(meridian["id"]) == 1
