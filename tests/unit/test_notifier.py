from __future__ import annotations

import pytest

from refurb_tracker.domain.models import RefurbRequest, RequestDraft
from refurb_tracker.infrastructure.change_feed import ChangeEvent, parse_notification
from refurb_tracker.notifier import ChangeNotifier, format_new_request_alert
from refurb_tracker.tables import COMPLETIONS, REQUESTS


@pytest.fixture
def notifier(feed, shipping_store) -> ChangeNotifier:
    return ChangeNotifier(feed, shipping_store)


@pytest.mark.asyncio
async def test_insert_resolves_joined_record_before_alert(
    notifier, feed, shipping_store, meridian_session
) -> None:
    created = await shipping_store.submit(
        meridian_session, RequestDraft(instrument_type="Trumpet", quantity=3)
    )
    alerts: list[RefurbRequest] = []
    refreshes: list[str] = []

    await notifier.watch_requests(lambda: refreshes.append("refresh"), alerts.append)
    await feed.emit(REQUESTS, "INSERT", created.id)

    assert [a.id for a in alerts] == [created.id]
    assert alerts[0].location is not None
    assert format_new_request_alert(alerts[0]) == "New request from Meridian - 3x Trumpet"
    assert refreshes == ["refresh"]


@pytest.mark.asyncio
async def test_update_only_refreshes(notifier, feed) -> None:
    alerts = []
    refreshes = []

    await notifier.watch_requests(lambda: refreshes.append(1), alerts.append)
    await feed.emit(REQUESTS, "UPDATE", "any-id")

    assert refreshes == [1]
    assert alerts == []


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(notifier, feed) -> None:
    seen = []

    async def on_refresh() -> None:
        seen.append("async")

    await notifier.watch_requests(on_refresh)
    await feed.emit(REQUESTS, "UPDATE", "any-id")

    assert seen == ["async"]


@pytest.mark.asyncio
async def test_unresolvable_insert_is_logged_and_skipped(notifier, feed) -> None:
    alerts = []
    refreshes = []

    await notifier.watch_requests(lambda: refreshes.append(1), alerts.append)
    await feed.emit(REQUESTS, "INSERT", "missing-id")

    assert alerts == []
    assert refreshes == [1]


@pytest.mark.asyncio
async def test_completions_are_insert_only(notifier, feed) -> None:
    refreshes = []

    await notifier.watch_completions(lambda: refreshes.append(1))
    await feed.emit(COMPLETIONS, "INSERT", "c-1")
    await feed.emit(COMPLETIONS, "UPDATE", "c-1")
    await feed.emit(REQUESTS, "INSERT", "r-1")

    assert refreshes == [1]


@pytest.mark.asyncio
async def test_events_after_close_are_dropped(notifier, feed) -> None:
    refreshes = []
    subscription = await notifier.watch_requests(lambda: refreshes.append(1))
    handler = feed.subscriptions[0].handler

    await subscription.close()
    # An event already in flight when the view closed.
    await handler(ChangeEvent(table=REQUESTS, event="UPDATE", row_id="x"))

    assert refreshes == []
    assert feed.subscriptions == []


@pytest.mark.asyncio
async def test_subscription_as_context_manager(notifier, feed) -> None:
    async with await notifier.watch_completions(lambda: None):
        assert len(feed.subscriptions) == 1
    assert feed.subscriptions == []


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_feed(notifier, feed) -> None:
    calls = []

    def broken() -> None:
        calls.append(1)
        raise RuntimeError("view crashed")

    await notifier.watch_requests(broken)
    await feed.emit(REQUESTS, "UPDATE", "a")
    await feed.emit(REQUESTS, "UPDATE", "b")

    assert calls == [1, 1]


def test_alert_without_location_says_unknown() -> None:
    request = RefurbRequest.model_validate(
        {
            "id": "r",
            "human_request_code": "9397-20260115-0001",
            "location_id": "l",
            "tech_id": "t",
            "instrument_type": "Cello",
            "quantity_requested": 2,
            "status": "Requested",
            "created_at": "2026-01-15T14:00:00Z",
            "updated_at": "2026-01-15T14:00:00Z",
        }
    )
    assert format_new_request_alert(request) == "New request from Unknown - 2x Cello"


def test_parse_notification() -> None:
    event = parse_notification('{"table": "refurb_requests", "event": "INSERT", "id": "abc"}')
    assert event == ChangeEvent(table="refurb_requests", event="INSERT", row_id="abc")
    assert parse_notification("not json") is None
    assert parse_notification('{"table": "refurb_requests"}') is None
