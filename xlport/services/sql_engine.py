from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any

from ..models.errors import EngineError, ErrorKind
from ..models.jobs import QueryJob
from ..models.results import ColumnInfo, QueryFailure, QueryResult, QuerySuccess
from .coercion import coerce_parameter, neutral_type_of

"""SQL execution engine.

execute() runs the statement as given; test() additionally caps the row set,
natively when the dialect can express it for the statement shape
(LIMIT / TOP / ROWNUM) and always client-side with fetchmany.

Parameters are written as ``@name`` in the SQL text and rewritten into the
driver's named style; values given as text are typed client-side first.
Nothing raises out of execute()/test(): every failure becomes QueryFailure
with the driver's raw message.
"""

__all__ = [
    "SqlExecutionEngine",
]

logger = logging.getLogger(__name__)


class SqlExecutionEngine:
    def execute(self, job: QueryJob) -> QueryResult:
        return self._run(job, job.row_cap)

    def test(self, job: QueryJob, max_rows: int) -> QueryResult:
        if max_rows < 1:
            raise ValueError(f"max_rows must be >= 1: {max_rows}")
        return self._run(job, max_rows)

    def _run(self, job: QueryJob, row_cap: int | None) -> QueryResult:
        handle = job.source
        started = time.perf_counter()
        try:
            result = self._execute(job, row_cap, started)
        except EngineError as e:
            logger.error("query failed: %s", e)
            return QueryFailure(
                error_kind=e.kind,
                error_message=e.message,
                duration_ms=_elapsed_ms(started),
                dialect=e.dialect or handle.name,
            )
        except Exception as e:
            kind = ErrorKind.TIMEOUT if handle.is_timeout(e) else ErrorKind.QUERY_FAILED
            logger.error("query failed (%s, %s): %s", handle.name, kind.value, e)
            return QueryFailure(
                error_kind=kind,
                error_message=str(e),
                duration_ms=_elapsed_ms(started),
                dialect=handle.name,
            )
        logger.info(
            "query ok (%s) rows=%d affected=%d duration_ms=%d",
            handle.name, result.row_count, result.affected_rows, result.duration_ms,
        )
        return result

    def _execute(self, job: QueryJob, row_cap: int | None, started: float) -> QuerySuccess:
        dialect = job.source.sql_dialect
        sql = job.sql_text
        if not sql or not sql.strip():
            raise EngineError(ErrorKind.QUERY_FAILED, "empty SQL statement", dialect=job.source.name)

        params: dict[str, Any] | None = None
        if job.parameters:
            sql, used = dialect.bind_named(sql, job.parameters.keys())
            params = {name: dialect.adapt_value(coerce_parameter(job.parameters[name])) for name in used}
        if row_cap is not None:
            capped = dialect.apply_row_cap(sql, row_cap)
            if capped is not None:
                sql = capped
            else:
                logger.debug("no native row cap for statement; truncating client-side to %d", row_cap)
        logger.debug("execute (%s): %s", job.source.name, sql)

        with job.source.connect(job.timeout_seconds) as conn:
            cur = conn.cursor()
            try:
                if params:
                    cur.execute(sql, params)
                else:
                    cur.execute(sql)
                if cur.description is None:
                    affected = cur.rowcount if cur.rowcount is not None and cur.rowcount >= 0 else 0
                    conn.commit()
                    return QuerySuccess(columns=(), rows=(), affected_rows=affected, duration_ms=_elapsed_ms(started))
                names = [d[0] for d in cur.description]
                fetched = cur.fetchmany(row_cap) if row_cap is not None else cur.fetchall()
                rows = tuple(tuple(r) for r in fetched)
            finally:
                cur.close()

        return QuerySuccess(
            columns=_infer_columns(names, rows),
            rows=rows,
            affected_rows=0,
            duration_ms=_elapsed_ms(started),
        )


def _infer_columns(names: Sequence[str], rows: Sequence[Sequence[Any]]) -> tuple[ColumnInfo, ...]:
    columns: list[ColumnInfo] = []
    for i, name in enumerate(names):
        first = next((r[i] for r in rows if r[i] is not None), None)
        columns.append(ColumnInfo(name=str(name), type=neutral_type_of(first) if first is not None else "TEXT"))
    return tuple(columns)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)

