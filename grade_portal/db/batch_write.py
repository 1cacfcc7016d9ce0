from __future__ import annotations

import re
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""Batched INSERT / upsert via psycopg2.extras.execute_values.

One call = one statement family submitted through one cursor; the caller owns
the transaction boundary. Upsert is ``INSERT ... ON CONFLICT (keys) DO UPDATE
SET col = EXCLUDED.col`` for every non-key column.
"""

__all__ = [
    "BatchMetrics",
    "BatchWriteError",
    "WriteResult",
    "batch_write",
    "quote_ident",
]

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class BatchWriteError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of a single execute_values call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float
    end_time: float


@dataclass(frozen=True)
class WriteResult:
    written_rows: int


def quote_ident(name: str) -> str:
    """Double-quote a table/column name; only plain identifiers are allowed."""
    if not _IDENT_RE.match(name):
        raise BatchWriteError(f"invalid identifier: {name!r}")
    return f'"{name}"'


def batch_write(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    conflict_columns: Sequence[str] | None = None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> WriteResult:
    """Perform a batched INSERT, or an upsert when ``conflict_columns`` is given.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: target table
    columns: column order of each row
    rows: row sequences
    conflict_columns: unique key for ON CONFLICT; None -> plain INSERT
    page_size: execute_values page size
    metrics_callback: receives BatchMetrics; not called for empty input
    """
    rows_list = list(rows)
    if not rows_list:
        return WriteResult(written_rows=0)

    cols_sql = ",".join(quote_ident(c) for c in columns)
    sql = f"INSERT INTO {quote_ident(table)} ({cols_sql}) VALUES %s"
    if conflict_columns:
        keys_sql = ",".join(quote_ident(c) for c in conflict_columns)
        updates = [c for c in columns if c not in set(conflict_columns)]
        if updates:
            set_sql = ",".join(f"{quote_ident(c)} = EXCLUDED.{quote_ident(c)}" for c in updates)
            sql += f" ON CONFLICT ({keys_sql}) DO UPDATE SET {set_sql}"
        else:
            sql += f" ON CONFLICT ({keys_sql}) DO NOTHING"

    start_time = time.time()
    try:
        execute_values(cursor, sql, rows_list, page_size=page_size)
    except Exception as e:
        raise BatchWriteError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(BatchMetrics(
                batch_size=len(rows_list),
                elapsed_seconds=end_time - start_time,
                start_time=start_time,
                end_time=end_time,
            ))

    return WriteResult(written_rows=len(rows_list))
