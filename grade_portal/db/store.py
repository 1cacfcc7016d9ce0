from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import psycopg2
from psycopg2.extras import RealDictCursor

from .batch_write import BatchMetrics, BatchWriteError, batch_write, quote_ident

"""Relational store used by the upload pipeline.

The pipeline only needs five verbs; ``Store`` is that surface.
``PostgresStore`` implements it on a psycopg2 connection. Every verb runs in
its own transaction (commit on success, rollback on failure), so a batch
insert is atomic but an insert followed by an upsert is not.
"""

__all__ = [
    "Store",
    "StoreError",
    "PostgresStore",
]

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Any failure reported by the store (constraint violation, lookup miss, I/O)."""


class Store(Protocol):
    def select(
        self, table: str, columns: Sequence[str], filters: Mapping[str, Any] | None = None
    ) -> list[dict[str, Any]]: ...

    def select_single(
        self, table: str, columns: Sequence[str], filters: Mapping[str, Any]
    ) -> dict[str, Any]: ...

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int: ...

    def upsert(
        self, table: str, rows: Sequence[Mapping[str, Any]], conflict_columns: Sequence[str]
    ) -> int: ...

    def delete(self, table: str, filters: Mapping[str, Any] | None = None) -> int: ...


def _where(filters: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
    if not filters:
        return "", []
    clauses = [f"{quote_ident(col)} = %s" for col in filters]
    return " WHERE " + " AND ".join(clauses), list(filters.values())


def _columns_of(rows: Sequence[Mapping[str, Any]]) -> list[str]:
    columns = list(rows[0].keys())
    for r in rows[1:]:
        if list(r.keys()) != columns:
            raise StoreError("all rows of a batch must share the same columns")
    return columns


class PostgresStore:
    """Store backed by a psycopg2 connection (autocommit off)."""

    def __init__(self, connection: Any, page_size: int = 1000) -> None:
        self._conn = connection
        self._page_size = page_size

    def _log_metrics(self, table: str) -> Any:
        def callback(m: BatchMetrics) -> None:
            logger.debug("batch table=%s rows=%d elapsed=%.3fs", table, m.batch_size, m.elapsed_seconds)
        return callback

    def _run(self, action: Any) -> Any:
        try:
            with self._conn:  # commit / rollback
                with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
                    return action(cur)
        except (psycopg2.Error, BatchWriteError) as e:
            raise StoreError(str(e).strip()) from e

    def select(
        self, table: str, columns: Sequence[str], filters: Mapping[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        cols_sql = ",".join(quote_ident(c) for c in columns)
        where_sql, params = _where(filters)
        sql = f"SELECT {cols_sql} FROM {quote_ident(table)}{where_sql}"

        def action(cur: Any) -> list[dict[str, Any]]:
            cur.execute(sql, params)
            return [dict(r) for r in cur.fetchall()]

        return self._run(action)

    def select_single(
        self, table: str, columns: Sequence[str], filters: Mapping[str, Any]
    ) -> dict[str, Any]:
        rows = self.select(table, columns, filters)
        if len(rows) != 1:
            raise StoreError(f"expected exactly one row from {table} where {dict(filters)}, got {len(rows)}")
        return rows[0]

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        columns = _columns_of(rows)
        values = [[r[c] for c in columns] for r in rows]
        result = self._run(lambda cur: batch_write(
            cur, table, columns, values,
            page_size=self._page_size, metrics_callback=self._log_metrics(table),
        ))
        return result.written_rows

    def upsert(
        self, table: str, rows: Sequence[Mapping[str, Any]], conflict_columns: Sequence[str]
    ) -> int:
        if not rows:
            return 0
        columns = _columns_of(rows)
        values = [[r[c] for c in columns] for r in rows]
        result = self._run(lambda cur: batch_write(
            cur, table, columns, values, conflict_columns=conflict_columns,
            page_size=self._page_size, metrics_callback=self._log_metrics(table),
        ))
        return result.written_rows

    def delete(self, table: str, filters: Mapping[str, Any] | None = None) -> int:
        where_sql, params = _where(filters)
        sql = f"DELETE FROM {quote_ident(table)}{where_sql}"

        def action(cur: Any) -> int:
            cur.execute(sql, params)
            return cur.rowcount

        return self._run(action)

    def close(self) -> None:
        if not self._conn.closed:
            self._conn.close()
