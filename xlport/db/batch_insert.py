from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from .dialects import SqlDialect

"""Dialect-neutral batch INSERT.

One batch is written as a single multi-row parameterized statement. It is
split into several statements only when the dialect's per-statement row or
bind-parameter limits would be exceeded (SQL Server: 1000 rows / 2100
parameters, SQLite: 999 parameters). Commit / rollback is the caller's
responsibility so that a whole batch succeeds or fails together.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
]


class BatchInsertError(Exception):
    """Driver failure while inserting a batch; __cause__ holds the driver exception."""


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of one batch_insert call."""
    batch_size: int  # rows in this batch
    statements: int  # INSERT statements issued
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    statements: int = 0


def batch_insert(
    cursor: Any,
    dialect: SqlDialect,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Insert rows into table using the dialect's multi-row INSERT shape.

    Parameters
    ----------
    cursor: DB-API cursor of an open connection
    dialect: SqlDialect of that connection
    table: 対象テーブル名 (未クォート。quote は dialect が行う)
    columns: 挿入列 (rows の各要素と同順)
    rows: 行シーケンス
    metrics_callback: receives BatchMetrics once per call. Not invoked when
        rows is empty (the function returns early).
    """
    rows_list = [tuple(r) for r in rows]
    if not rows_list:
        return InsertResult(inserted_rows=0, statements=0)

    per_statement = dialect.rows_per_statement(len(columns))
    sql_cache: dict[int, str] = {}
    statements = 0

    start_time = time.time()
    try:
        for offset in range(0, len(rows_list), per_statement):
            chunk = rows_list[offset:offset + per_statement]
            sql = sql_cache.get(len(chunk))
            if sql is None:
                sql = dialect.build_batch_insert(table, columns, len(chunk))
                sql_cache[len(chunk)] = sql
            params = [dialect.adapt_value(v) for row in chunk for v in row]
            cursor.execute(sql, params)
            statements += 1
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    statements=statements,
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows_list), statements=statements)
