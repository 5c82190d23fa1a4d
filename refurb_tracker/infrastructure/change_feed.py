"""
Row-level change feed.

The store pushes `{"table", "event", "id"}` notifications for inserts and
updates (see the triggers in `db/init.sql`). Subscribers register per table and
event type and receive a `ChangeEvent`; they re-query if they need joined data.

`PostgresChangeFeed` listens on a single channel over a dedicated asyncpg
connection and fans events out to the matching subscriptions.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, FrozenSet, Literal, Optional, Protocol, Set

import asyncpg

from refurb_tracker.infrastructure.db_factory import get_listen_connection
from refurb_tracker.utils.logging import get_logger

log = get_logger(__name__)

EventType = Literal["INSERT", "UPDATE"]


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: EventType
    row_id: str


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class FeedSubscription(Protocol):
    async def close(self) -> None:
        ...


class ChangeFeed(Protocol):
    """Push-style change feed filtered by table and event type."""

    async def subscribe(
        self, table: str, events: FrozenSet[EventType], handler: ChangeHandler
    ) -> FeedSubscription:
        ...


def parse_notification(payload: str) -> Optional[ChangeEvent]:
    """Decode a NOTIFY payload, returning None for anything malformed."""
    try:
        data = json.loads(payload)
        return ChangeEvent(table=data["table"], event=data["event"], row_id=str(data["id"]))
    except (ValueError, KeyError, TypeError):
        return None


@dataclass(eq=False)
class _Listener:
    table: str
    events: FrozenSet[EventType]
    handler: ChangeHandler


class _PostgresSubscription:
    def __init__(self, feed: "PostgresChangeFeed", listener: _Listener) -> None:
        self._feed = feed
        self._listener = listener
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._feed._remove(self._listener)


class PostgresChangeFeed:
    """
    `ChangeFeed` over PostgreSQL LISTEN/NOTIFY.

    The LISTEN connection is opened with the first subscription and closed
    when the last one goes away, so no listener outlives its views.
    """

    def __init__(self, dsn: str, channel: str = "refurb_changes") -> None:
        self._dsn = dsn
        self._channel = channel
        self._conn: Optional[asyncpg.Connection] = None
        self._listeners: list[_Listener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    async def subscribe(
        self, table: str, events: FrozenSet[EventType], handler: ChangeHandler
    ) -> FeedSubscription:
        listener = _Listener(table=table, events=frozenset(events), handler=handler)
        async with self._lock:
            if self._conn is None:
                self._conn = await get_listen_connection(self._dsn)
                await self._conn.add_listener(self._channel, self._on_notify)
                log.info("Listening for changes", extra={"channel": self._channel})
            self._listeners.append(listener)
        return _PostgresSubscription(self, listener)

    async def _remove(self, listener: _Listener) -> None:
        async with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
            if not self._listeners and self._conn is not None:
                conn, self._conn = self._conn, None
                try:
                    await conn.remove_listener(self._channel, self._on_notify)
                finally:
                    await conn.close()
                log.info("Stopped listening for changes", extra={"channel": self._channel})

    def _on_notify(self, connection, pid: int, channel: str, payload: str) -> None:
        event = parse_notification(payload)
        if event is None:
            log.warning("Ignoring malformed change notification", extra={"payload": payload})
            return
        for listener in list(self._listeners):
            if listener.table == event.table and event.event in listener.events:
                task = asyncio.get_running_loop().create_task(listener.handler(event))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        """Drop every subscription and wait for in-flight handlers."""
        for listener in list(self._listeners):
            await self._remove(listener)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "ChangeHandler",
    "EventType",
    "FeedSubscription",
    "PostgresChangeFeed",
    "parse_notification",
]
