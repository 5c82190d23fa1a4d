"""
Table-store contract and its PostgreSQL implementation.

The lifecycle engine only needs a small slice of a relational store: named
tables with equality/range/prefix filters, ordering, foreign-key joins,
inserts, updates that report the rows they touched, and a transaction scope.
`TableStore` captures that contract; `PostgresTableStore` fulfils it with
psycopg 3 over an `AsyncConnectionPool`.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

import psycopg
from psycopg import AsyncConnection, sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from refurb_tracker.errors import DuplicateKeyError, StoreError
from refurb_tracker.utils.logging import get_logger

log = get_logger(__name__)

FilterOp = Literal["eq", "neq", "gte", "lte", "in", "prefix"]

_OPERATORS = {
    "eq": "=",
    "neq": "<>",
    "gte": ">=",
    "lte": "<=",
}


@dataclass(frozen=True)
class Filter:
    """A single column predicate. `prefix` matches strings starting with `value`."""

    column: str
    op: FilterOp
    value: Any

    def matches(self, row: Mapping[str, Any]) -> bool:
        """Evaluate the predicate against an in-memory row."""
        actual = row.get(self.column)
        if self.op == "eq":
            return actual == self.value
        if self.op == "neq":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        if self.op == "prefix":
            return isinstance(actual, str) and actual.startswith(self.value)
        if actual is None:
            return False
        if self.op == "gte":
            return actual >= self.value
        if self.op == "lte":
            return actual <= self.value
        raise ValueError(f"Unsupported filter operator '{self.op}'")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def prefix(column: str, value: str) -> Filter:
    return Filter(column, "prefix", value)


@dataclass(frozen=True)
class Join:
    """
    Embed the row referenced by `foreign_key` under `alias`.

    e.g. Join("location", "locations", "location_id") adds row["location"].
    """

    alias: str
    table: str
    foreign_key: str


@runtime_checkable
class TableStore(Protocol):
    """
    Minimal async table-store interface used by the lifecycle engine.
    """

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
        """Return matching rows as dicts, joined rows embedded under their alias."""
        ...

    async def count(self, table: str, *, filters: Sequence[Filter] = ()) -> int:
        """Count matching rows."""
        ...

    async def insert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored. Raises DuplicateKeyError on conflicts."""
        ...

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Sequence[Filter]
    ) -> List[Dict[str, Any]]:
        """Update matching rows and return the updated rows (empty if none matched)."""
        ...

    def transaction(self) -> Any:
        """Async context manager yielding a TableStore whose writes commit atomically."""
        ...


def _normalize(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Stringify UUID keys so domain models see plain string ids."""
    return {k: (str(v) if isinstance(v, uuid.UUID) else v) for k, v in row.items()}


def _adapt(value: Any) -> Any:
    if isinstance(value, dict):
        return Jsonb(value)
    return value


class PostgresTableStore:
    """
    `TableStore` backed by PostgreSQL through psycopg's async driver.

    Either owns a pool (normal use) or is bound to a single connection that is
    inside an open transaction (see `transaction()`).
    """

    def __init__(
        self,
        pool: Optional[AsyncConnectionPool] = None,
        *,
        connection: Optional[AsyncConnection] = None,
    ) -> None:
        if pool is None and connection is None:
            raise ValueError("PostgresTableStore needs a pool or a connection")
        self._pool = pool
        self._connection = connection

    @asynccontextmanager
    async def _conn(self) -> AsyncIterator[AsyncConnection]:
        if self._connection is not None:
            yield self._connection
            return
        assert self._pool is not None
        async with self._pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["PostgresTableStore"]:
        if self._connection is not None:
            async with self._connection.transaction():
                yield self
            return
        assert self._pool is not None
        async with self._pool.connection() as conn:
            async with conn.transaction():
                yield PostgresTableStore(connection=conn)

    @staticmethod
    def _where(filters: Sequence[Filter], table_alias: str) -> tuple[sql.Composable, list]:
        if not filters:
            return sql.SQL(""), []
        clauses: List[sql.Composable] = []
        params: list = []
        for flt in filters:
            column = sql.Identifier(table_alias, flt.column)
            if flt.op == "in":
                clauses.append(sql.SQL("{} = ANY(%s)").format(column))
                params.append(list(flt.value))
            elif flt.op == "prefix":
                clauses.append(sql.SQL("{} LIKE %s").format(column))
                escaped = (
                    flt.value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
                )
                params.append(escaped + "%")
            elif flt.op in _OPERATORS:
                clauses.append(sql.SQL("{} {} %s").format(column, sql.SQL(_OPERATORS[flt.op])))
                params.append(flt.value)
            else:
                raise StoreError(f"Unsupported filter operator '{flt.op}'")
        return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params

    async def _fetch(self, query: sql.Composable, params: Sequence[Any]) -> List[Dict[str, Any]]:
        try:
            async with self._conn() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, params)
                    rows = await cur.fetchall() if cur.description else []
        except psycopg.errors.UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", None)
            raise DuplicateKeyError(str(exc), constraint=constraint) from exc
        except psycopg.Error as exc:
            log.debug("Store operation failed", extra={"error": str(exc)})
            raise StoreError(str(exc)) from exc
        return [_normalize(row) for row in rows]

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
        base = "t"
        if columns:
            selected: List[sql.Composable] = [sql.Identifier(base, c) for c in columns]
        else:
            selected = [sql.SQL("{}.*").format(sql.Identifier(base))]
        join_clauses: List[sql.Composable] = []
        for index, join in enumerate(joins):
            alias = f"j{index}"
            # a LEFT JOIN miss yields a row of NULLs; surface it as NULL instead
            selected.append(
                sql.SQL("CASE WHEN {}.id IS NULL THEN NULL ELSE row_to_json({}.*) END AS {}").format(
                    sql.Identifier(alias), sql.Identifier(alias), sql.Identifier(join.alias)
                )
            )
            join_clauses.append(
                sql.SQL(" LEFT JOIN {} AS {} ON {}.id = {}").format(
                    sql.Identifier(join.table),
                    sql.Identifier(alias),
                    sql.Identifier(alias),
                    sql.Identifier(base, join.foreign_key),
                )
            )
        where, params = self._where(filters, base)
        query = sql.SQL("SELECT {} FROM {} AS {}").format(
            sql.SQL(", ").join(selected), sql.Identifier(table), sql.Identifier(base)
        )
        query = query + sql.Composed(join_clauses) + where
        if order_by:
            direction = sql.SQL(" DESC") if descending else sql.SQL(" ASC")
            query = query + sql.SQL(" ORDER BY {}").format(sql.Identifier(base, order_by)) + direction
        if limit is not None:
            query = query + sql.SQL(" LIMIT %s")
            params.append(limit)
        return await self._fetch(query, params)

    async def count(self, table: str, *, filters: Sequence[Filter] = ()) -> int:
        where, params = self._where(filters, "t")
        query = sql.SQL("SELECT count(*) AS n FROM {} AS t").format(sql.Identifier(table)) + where
        rows = await self._fetch(query, params)
        return int(rows[0]["n"]) if rows else 0

    async def insert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        keys = list(values)
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(k) for k in keys),
            sql.SQL(", ").join(sql.Placeholder() for _ in keys),
        )
        rows = await self._fetch(query, [_adapt(values[k]) for k in keys])
        return rows[0]

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Sequence[Filter]
    ) -> List[Dict[str, Any]]:
        if not filters:
            raise StoreError("Refusing to update without filters")
        keys = list(values)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(k)) for k in keys
        )
        where, params = self._where(filters, "t")
        query = (
            sql.SQL("UPDATE {} AS t SET ").format(sql.Identifier(table))
            + assignments
            + where
            + sql.SQL(" RETURNING t.*")
        )
        return await self._fetch(query, [_adapt(values[k]) for k in keys] + params)


__all__ = [
    "Filter",
    "Join",
    "PostgresTableStore",
    "TableStore",
    "eq",
    "gte",
    "in_",
    "lte",
    "neq",
    "prefix",
]
