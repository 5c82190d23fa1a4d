"""
Change notifier: turns the store's push feed into view callbacks.

Requests are watched for inserts and updates, completions for inserts only.
Updates trigger the refresh callback without looking at the payload; inserts
additionally resolve the joined request (location and technician) and fire the
new-request alert. Resolution failures are logged and swallowed since this is
a background path.

Each watch returns a `Subscription`; closing it unsubscribes from the feed and
any event still in flight is dropped.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, List, Optional, Union

from refurb_tracker.domain.models import RefurbRequest
from refurb_tracker.infrastructure.change_feed import ChangeEvent, ChangeFeed, FeedSubscription
from refurb_tracker.request_store import RequestStore
from refurb_tracker.tables import COMPLETIONS, REQUESTS
from refurb_tracker.utils.logging import get_logger

log = get_logger(__name__)

RefreshCallback = Callable[[], Union[None, Awaitable[None]]]
AlertCallback = Callable[[RefurbRequest], Union[None, Awaitable[None]]]


def format_new_request_alert(request: RefurbRequest) -> str:
    """Alert text shown to the hub when a request arrives."""
    city = request.location.city if request.location is not None else "Unknown"
    return (
        f"New request from {city} - "
        f"{request.quantity_requested}x {request.instrument.instrument_type}"
    )


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """Handle for one watch; usable as an async context manager."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._feeds: List[FeedSubscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _attach(self, feed_subscription: FeedSubscription) -> None:
        self._feeds.append(feed_subscription)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        feeds, self._feeds = self._feeds, []
        for feed_subscription in feeds:
            await feed_subscription.close()
        log.debug("Subscription closed", extra={"subscription": self.name})

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class ChangeNotifier:
    """
    Subscribes views to request and completion changes.

    Parameters
    ----------
    feed : ChangeFeed
        Push feed of row-level changes.
    requests : RequestStore
        Used to resolve the joined record of an inserted request.
    """

    def __init__(self, feed: ChangeFeed, requests: RequestStore) -> None:
        self._feed = feed
        self._requests = requests

    async def watch_requests(
        self,
        on_refresh: RefreshCallback,
        on_new_request: Optional[AlertCallback] = None,
    ) -> Subscription:
        """Invoke `on_refresh` on any request change and `on_new_request` on inserts."""
        subscription = Subscription("requests")

        async def handle(event: ChangeEvent) -> None:
            if subscription.closed:
                return
            if event.event == "INSERT" and on_new_request is not None:
                request = await self._resolve(event.row_id)
                if request is not None and not subscription.closed:
                    log.info(
                        format_new_request_alert(request),
                        extra={"request_id": request.id, "code": request.human_request_code},
                    )
                    await self._safe(on_new_request, request, event=event)
            if not subscription.closed:
                await self._safe(on_refresh, event=event)

        subscription._attach(
            await self._feed.subscribe(REQUESTS, frozenset({"INSERT", "UPDATE"}), handle)
        )
        return subscription

    async def watch_completions(self, on_refresh: RefreshCallback) -> Subscription:
        """Invoke `on_refresh` whenever a completion is logged."""
        subscription = Subscription("completions")

        async def handle(event: ChangeEvent) -> None:
            if not subscription.closed:
                await self._safe(on_refresh, event=event)

        subscription._attach(await self._feed.subscribe(COMPLETIONS, frozenset({"INSERT"}), handle))
        return subscription

    async def _resolve(self, request_id: str) -> Optional[RefurbRequest]:
        try:
            return await self._requests.get_request(request_id)
        except Exception:  # noqa: BLE001 - notification resolution is best effort
            log.exception("Could not resolve new request", extra={"request_id": request_id})
            return None

    async def _safe(self, callback: Callable[..., Any], *args: Any, event: ChangeEvent) -> None:
        try:
            await _invoke(callback, *args)
        except Exception:  # noqa: BLE001 - a failing view must not stop the feed
            log.exception(
                "Change callback failed",
                extra={"table": event.table, "event": event.event, "row_id": event.row_id},
            )


__all__ = ["ChangeNotifier", "Subscription", "format_new_request_alert"]
