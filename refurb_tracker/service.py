"""
Service assembly.

Wires the configured lifecycle, the PostgreSQL adapters and the engine
components into one `RefurbService`. `open_service` owns the connection pool
and the change feed and releases both on exit.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from refurb_tracker.completions import CompletionLog
from refurb_tracker.config import Settings, get_settings
from refurb_tracker.infrastructure.change_feed import ChangeFeed, PostgresChangeFeed
from refurb_tracker.infrastructure.db_factory import PoolManager
from refurb_tracker.infrastructure.store import PostgresTableStore, TableStore
from refurb_tracker.lifecycle import LifecycleDefinition, resolve_lifecycle
from refurb_tracker.metrics import MetricsAggregator
from refurb_tracker.notifier import ChangeNotifier
from refurb_tracker.reference import ReferenceData
from refurb_tracker.request_store import RequestStore
from refurb_tracker.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class RefurbService:
    definition: LifecycleDefinition
    requests: RequestStore
    completions: CompletionLog
    reference: ReferenceData
    metrics: MetricsAggregator
    notifier: ChangeNotifier


def build_service(store: TableStore, feed: ChangeFeed, settings: Settings) -> RefurbService:
    """Compose the engine components over an already-open store and feed."""
    definition = resolve_lifecycle(settings.lifecycle)
    requests = RequestStore(
        store,
        definition,
        tz_name=settings.timezone,
        code_attempts=settings.request_code_attempts,
    )
    return RefurbService(
        definition=definition,
        requests=requests,
        completions=CompletionLog(store, tz_name=settings.timezone),
        reference=ReferenceData(store),
        metrics=MetricsAggregator(
            store,
            tz_name=settings.timezone,
            short_days=settings.short_window_days,
            long_days=settings.long_window_days,
        ),
        notifier=ChangeNotifier(feed, requests),
    )


@asynccontextmanager
async def open_service(settings: Optional[Settings] = None) -> AsyncIterator[RefurbService]:
    """Open the pool and change feed, yield the service, then close both."""
    settings = settings or get_settings()
    manager = PoolManager(settings)
    feed = PostgresChangeFeed(manager.dsn, channel=settings.change_channel)
    pool = await manager.open()
    log.info(
        "Refurb service started",
        extra={"lifecycle": settings.lifecycle, "timezone": settings.timezone},
    )
    try:
        yield build_service(PostgresTableStore(pool), feed, settings)
    finally:
        try:
            await feed.close()
        finally:
            await manager.close()


__all__ = ["RefurbService", "build_service", "open_service"]
