"""
Pytest configuration for the refurb tracker.

Provides fixtures for:
- An in-memory table store and change feed used by the unit tests
- Reference data (locations, technicians) and a technician session
- A fixed clock
- Settings and database access for integration tests
"""

from __future__ import annotations

import asyncio
import copy
import os
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, FrozenSet, Generator, List, Mapping, Optional, Sequence

import psycopg
import pytest

from refurb_tracker.config import Settings
from refurb_tracker.domain.models import SessionContext
from refurb_tracker.errors import DuplicateKeyError, StoreError
from refurb_tracker.identifiers import CODE_COLUMN, CODE_CONSTRAINT
from refurb_tracker.infrastructure.change_feed import ChangeEvent, ChangeHandler
from refurb_tracker.infrastructure.store import Filter, Join
from refurb_tracker.lifecycle import FULFILLMENT_LIFECYCLE, SHIPPING_LIFECYCLE
from refurb_tracker.request_store import RequestStore
from refurb_tracker.tables import LOCATIONS, REQUESTS, TECHNICIANS

FIXED_NOW = datetime(2026, 1, 15, 14, 0, tzinfo=timezone.utc)


class FakeTableStore:
    """
    In-memory `TableStore`.

    Every call yields to the event loop once so concurrent callers interleave
    the way they would against a real database. Transactions are serialized
    and roll back on error. `fail_tables` makes reads of a table raise
    `StoreError`.
    """

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.unique: Dict[str, Dict[str, str]] = {REQUESTS: {CODE_COLUMN: CODE_CONSTRAINT}}
        self.fail_tables: set[str] = set()
        self.fail_writes: set[str] = set()
        self._tx_lock = asyncio.Lock()

    def add(self, table: str, **values: Any) -> Dict[str, Any]:
        row = {"id": str(uuid.uuid4()), **values}
        self.tables[table].append(row)
        return row

    def _check(self, table: str, writes: bool = False) -> None:
        if table in self.fail_tables or (writes and table in self.fail_writes):
            raise StoreError(f"{table} is unavailable")

    def _join(self, row: Dict[str, Any], joins: Sequence[Join]) -> Dict[str, Any]:
        for join in joins:
            target = next(
                (r for r in self.tables[join.table] if r["id"] == row.get(join.foreign_key)),
                None,
            )
            row[join.alias] = copy.deepcopy(target)
        return row

    async def select(
        self,
        table: str,
        *,
        columns: Sequence[str] = (),
        filters: Sequence[Filter] = (),
        joins: Sequence[Join] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        self._check(table)
        rows = [copy.deepcopy(r) for r in self.tables[table] if all(f.matches(r) for f in filters)]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
        if columns:
            rows = [{c: r.get(c) for c in columns} | {"id": r["id"]} for r in rows]
        rows = [self._join(r, joins) for r in rows]
        return rows[:limit] if limit is not None else rows

    async def count(self, table: str, *, filters: Sequence[Filter] = ()) -> int:
        await asyncio.sleep(0)
        self._check(table)
        return sum(1 for r in self.tables[table] if all(f.matches(r) for f in filters))

    async def insert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        self._check(table, writes=True)
        for column, constraint in self.unique.get(table, {}).items():
            if any(r.get(column) == values.get(column) for r in self.tables[table]):
                raise DuplicateKeyError(
                    f"duplicate key value violates unique constraint \"{constraint}\"",
                    constraint=constraint,
                )
        row = {"id": str(uuid.uuid4()), **copy.deepcopy(dict(values))}
        self.tables[table].append(row)
        return copy.deepcopy(row)

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Sequence[Filter]
    ) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        self._check(table, writes=True)
        touched = []
        for row in self.tables[table]:
            if all(f.matches(row) for f in filters):
                row.update(copy.deepcopy(dict(values)))
                touched.append(copy.deepcopy(row))
        return touched

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["FakeTableStore"]:
        async with self._tx_lock:
            snapshot = copy.deepcopy(dict(self.tables))
            try:
                yield self
            except BaseException:
                self.tables.clear()
                self.tables.update(snapshot)
                raise


class FakeSubscription:
    def __init__(self, feed: "FakeChangeFeed", table: str, events: FrozenSet[str], handler) -> None:
        self.feed = feed
        self.table = table
        self.events = events
        self.handler: ChangeHandler = handler
        self.closed = False

    async def close(self) -> None:
        self.closed = True
        if self in self.feed.subscriptions:
            self.feed.subscriptions.remove(self)


class FakeChangeFeed:
    """In-memory `ChangeFeed`; tests push events with `emit`."""

    def __init__(self) -> None:
        self.subscriptions: List[FakeSubscription] = []

    async def subscribe(self, table: str, events: FrozenSet[str], handler) -> FakeSubscription:
        sub = FakeSubscription(self, table, frozenset(events), handler)
        self.subscriptions.append(sub)
        return sub

    async def emit(self, table: str, event: str, row_id: str) -> None:
        change = ChangeEvent(table=table, event=event, row_id=row_id)  # type: ignore[arg-type]
        for sub in list(self.subscriptions):
            if sub.table == table and event in sub.events:
                await sub.handler(change)


class Clock:
    """Mutable clock for tests that need time to pass."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store() -> FakeTableStore:
    return FakeTableStore()


@pytest.fixture
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@pytest.fixture
def locations(store: FakeTableStore) -> Dict[str, Dict[str, Any]]:
    """Three locations keyed by city."""
    return {
        city: store.add(LOCATIONS, store_number=number, city=city, state="MS", created_at=FIXED_NOW)
        for number, city in (("9396", "Flowood"), ("9397", "Meridian"), ("9398", "Biloxi"))
    }


@pytest.fixture
def technicians(
    store: FakeTableStore, locations: Dict[str, Dict[str, Any]]
) -> Dict[str, Dict[str, Any]]:
    """Technicians keyed by name; Dana is inactive."""
    return {
        name: store.add(
            TECHNICIANS,
            name=name,
            email=None,
            location_id=locations[city]["id"],
            pin=pin,
            is_active=active,
            created_at=FIXED_NOW,
        )
        for name, city, pin, active in (
            ("Riley", "Meridian", "1234", True),
            ("Avery", "Meridian", "4321", True),
            ("Jordan", "Biloxi", "5555", True),
            ("Dana", "Flowood", "0000", False),
        )
    }


def session_for(tech: Mapping[str, Any], location: Mapping[str, Any]) -> SessionContext:
    return SessionContext(
        location_id=location["id"],
        tech_id=tech["id"],
        tech_name=tech["name"],
        location_city=location["city"],
        store_number=location["store_number"],
    )


@pytest.fixture
def meridian_session(technicians, locations) -> SessionContext:
    return session_for(technicians["Riley"], locations["Meridian"])


@pytest.fixture
def biloxi_session(technicians, locations) -> SessionContext:
    return session_for(technicians["Jordan"], locations["Biloxi"])


@pytest.fixture
def shipping_store(store: FakeTableStore, clock: Clock, technicians) -> RequestStore:
    return RequestStore(store, SHIPPING_LIFECYCLE, clock=clock)


@pytest.fixture
def fulfillment_store(store: FakeTableStore, clock: Clock, technicians) -> RequestStore:
    return RequestStore(store, FULFILLMENT_LIFECYCLE, clock=clock)


# Integration fixtures


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "refurb_tracker"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection(test_dsn: str) -> Generator[psycopg.Connection, None, None]:
    """
    Session-scoped connection with the schema applied.

    Skips when the database is not reachable.
    """
    try:
        conn = psycopg.connect(test_dsn, connect_timeout=5)
    except psycopg.OperationalError:
        pytest.skip("Database not available for integration tests")
    try:
        init_sql = Path(__file__).parent.parent / "db" / "init.sql"
        conn.execute(init_sql.read_text(encoding="utf-8"))
        conn.commit()
        yield conn
    finally:
        conn.close()


@pytest.fixture
def clean_tables(db_connection: psycopg.Connection):
    """Empty request, completion and activity tables around a test."""

    def truncate() -> None:
        db_connection.execute(
            "TRUNCATE TABLE activity_log, refurb_requests, daily_completions CASCADE"
        )
        db_connection.commit()

    truncate()
    yield
    truncate()
