"""
Infrastructure package for the refurb tracker.

Centralizes storage concerns (connection pooling, the table-store contract and
its PostgreSQL adapter, the LISTEN/NOTIFY change feed). Keep this layer focused
on I/O and resource management, decoupled from lifecycle logic.
"""

from refurb_tracker.infrastructure.change_feed import (
    ChangeEvent,
    ChangeFeed,
    PostgresChangeFeed,
)
from refurb_tracker.infrastructure.db_factory import (
    PoolManager,
    get_listen_connection,
    get_sync_connection,
)
from refurb_tracker.infrastructure.store import Filter, Join, PostgresTableStore, TableStore

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "Filter",
    "Join",
    "PoolManager",
    "PostgresChangeFeed",
    "PostgresTableStore",
    "TableStore",
    "get_listen_connection",
    "get_sync_connection",
]
