"""
Database connection factory utilities for the refurb tracker.

Provides centralized management of the async PostgreSQL pool used by the
table store, the dedicated asyncpg connection used by the change feed, and a
plain sync connection for scripts. The PoolManager owns the pool lifecycle so
every client instance shares one pool and closes it exactly once.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import asyncpg
import psycopg
from psycopg import Connection
from psycopg_pool import AsyncConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from refurb_tracker.config import Settings, build_dsn, get_settings
from refurb_tracker.utils.logging import get_logger

log = get_logger(__name__)

_TRANSIENT = (psycopg.OperationalError, psycopg.InterfaceError, OSError, ConnectionError)


class PoolManager:
    """
    Owner of the async connection pool for one client instance.

    Use as an async context manager, or call `open()`/`close()` explicitly.
    """

    def __init__(self, settings: Optional[Settings] = None, dsn: Optional[str] = None) -> None:
        self._settings = settings or get_settings()
        self._dsn = dsn or build_dsn(self._settings)
        self._pool: Optional[AsyncConnectionPool] = None
        self._lock = asyncio.Lock()

    @property
    def dsn(self) -> str:
        return self._dsn

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(_TRANSIENT),
        reraise=True,
    )
    async def _open_pool(self) -> AsyncConnectionPool:
        pool = AsyncConnectionPool(
            conninfo=self._dsn,
            min_size=self._settings.pool_min_size,
            max_size=self._settings.pool_max_size,
            open=False,
        )
        try:
            await pool.open(wait=True, timeout=10.0)
        except Exception:
            await pool.close()
            raise
        return pool

    async def open(self) -> AsyncConnectionPool:
        """
        Get or create the asynchronous connection pool.

        Returns
        -------
        AsyncConnectionPool
            The managed async pool instance.
        """
        async with self._lock:
            if self._pool is None:
                self._pool = await self._open_pool()
                log.info(
                    "Connection pool opened",
                    extra={
                        "min_size": self._settings.pool_min_size,
                        "max_size": self._settings.pool_max_size,
                    },
                )
            return self._pool

    async def close(self) -> None:
        """Close the managed pool and release resources (idempotent)."""
        async with self._lock:
            if self._pool is not None:
                try:
                    await self._pool.close()
                finally:
                    self._pool = None
                log.info("Connection pool closed")

    async def __aenter__(self) -> AsyncConnectionPool:
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((OSError, ConnectionError, asyncpg.CannotConnectNowError)),
    reraise=True,
)
async def get_listen_connection(dsn: Optional[str] = None) -> asyncpg.Connection:
    """
    Acquire a dedicated asyncpg connection for LISTEN/NOTIFY with automatic retry.

    The change feed holds this connection for as long as it has subscribers;
    it is never returned to the shared pool.
    """
    return await asyncpg.connect(dsn or build_dsn())


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Used by maintenance scripts (schema load, seeding). Retries up to 3 times
    with exponential backoff for transient connection errors.
    """
    return psycopg.connect(dsn or build_dsn())


__all__ = [
    "PoolManager",
    "get_listen_connection",
    "get_sync_connection",
]
