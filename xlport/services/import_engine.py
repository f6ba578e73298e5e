from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..db.batch_insert import BatchInsertError, batch_insert
from ..db.catalog import UNKNOWN_DIALECT_WARNING
from ..db.table_ops import clear_table, ensure_table, rollback
from ..excel.columns import column_index
from ..excel.reader import SchemaReader, is_blank
from ..logging.error_log import ErrorLogBuffer
from ..models.error_record import ErrorRecord
from ..models.errors import EngineError, ErrorKind
from ..models.jobs import DEFAULT_BATCH_SIZE, ImportJob
from ..models.mapping import FieldMapping
from ..models.results import ImportResult
from ..models.source import InMemorySource, SourceRow
from .coercion import coerce_cell
from .progress import CancellationToken, NullProgressSink, ProgressSink

"""Batch import engine: source rows -> mappings -> target table.

State machine (logged at DEBUG):

    CREATED -> VALIDATING -> (CLEARING_TARGET)? -> STREAMING -> COMPLETED | FAILED

Failure units:
- a row that fails coercion is counted failed and recorded as a warning plus
  an ErrorRecord; the rest of its batch is still inserted
- a batch whose INSERT fails is rolled back and all its coerced rows are
  counted failed (no retry)
- missing source / bad header row / connection / DDL / clear failures are
  job-fatal and happen before any insert
- cancellation (between batches) and statement timeout stop the job; rows
  committed by earlier batches stay committed
- any other driver error (e.g. the connection dropping mid-job) ends the job
  as CONNECTION_FAILED, keeping the counts of the batches already done
"""

__all__ = [
    "ImportState",
    "BatchImportEngine",
    "BATCH_INSERT_FAILED",
]

logger = logging.getLogger(__name__)

BATCH_INSERT_FAILED = "BATCH_INSERT_FAILED"  # ErrorRecord.error_type (バッチ単位の失敗)


class ImportState(Enum):
    CREATED = "CREATED"
    VALIDATING = "VALIDATING"
    CLEARING_TARGET = "CLEARING_TARGET"
    STREAMING = "STREAMING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class _Counters:
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _OpenedSource:
    rows: list[SourceRow]
    file: str
    sheet: str


class BatchImportEngine:
    """Streams one ImportJob into its target table in fixed-size batches."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE, error_log: ErrorLogBuffer | None = None) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1: {batch_size}")
        self.batch_size = batch_size
        self.error_log = error_log

    def run(
        self,
        job: ImportJob,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> ImportResult:
        sink = sink if sink is not None else NullProgressSink()
        started = time.perf_counter()
        counters = _Counters()
        self._state(job, ImportState.CREATED)
        try:
            result = self._run(job, sink, cancel, counters, started)
        except EngineError as e:
            self._state(job, ImportState.FAILED)
            logger.error("import into %s failed: %s", job.target_table, e)
            result = self._finish(job, counters, started, kind=e.kind, message=e.message, dialect=e.dialect)
        except Exception as e:
            # 接続断など: ドライバ例外も結果に変換する
            kind = ErrorKind.TIMEOUT if job.target.is_timeout(e) else ErrorKind.CONNECTION_FAILED
            self._state(job, ImportState.FAILED)
            logger.error("import into %s failed: [%s] %s", job.target_table, kind.value, e)
            result = self._finish(job, counters, started, kind=kind, message=f"{type(e).__name__}: {e}")
        sink.set_status(result.summary())
        return result

    # ------------------------------------------------------------------ phases
    def _run(
        self,
        job: ImportJob,
        sink: ProgressSink,
        cancel: CancellationToken | None,
        counters: _Counters,
        started: float,
    ) -> ImportResult:
        handle = job.target
        self._state(job, ImportState.VALIDATING)
        if handle.fallback:
            counters.warnings.append(UNKNOWN_DIALECT_WARNING)
        indexes = _validate_mappings(job.mappings, job.target_table)
        source = _open_source(job)
        rows = source.rows
        if job.max_rows is not None:
            rows = rows[: max(job.max_rows, 0)]

        columns = {m.target_field_name: m.target_field_type for m in job.mappings}
        batch_size = job.batch_size or self.batch_size
        batches = [rows[i:i + batch_size] for i in range(0, len(rows), batch_size)]
        total_batches = len(batches)

        with handle.connect(job.timeout_seconds) as conn:
            ensure_table(conn, handle, job.target_table, columns)
            if job.clear_before_import:
                self._state(job, ImportState.CLEARING_TARGET)
                clear_table(conn, handle, job.target_table)

            self._state(job, ImportState.STREAMING)
            logger.info(
                "importing %d rows from %s into %s (%s) batch_size=%d batches=%d",
                len(rows), job.source.display_name, job.target_table, handle.name, batch_size, total_batches,
            )
            if not batches:
                sink.update_statistics(0, 0, 0, 0)
                sink.update_progress(100, "no data rows")

            for number, batch in enumerate(batches, start=1):
                if cancel is not None and cancel.cancelled:
                    counters.warnings.append(
                        f"cancelled before batch {number}/{total_batches}; "
                        f"rows of batches 1..{number - 1} remain committed"
                    )
                    self._state(job, ImportState.FAILED)
                    logger.warning("import into %s cancelled before batch %d", job.target_table, number)
                    return self._finish(job, counters, started, kind=ErrorKind.CANCELLED, message="import cancelled")

                batch_counters, timed_out = self._write_batch(conn, job, source, indexes, batch, number)
                if timed_out is not None:
                    counters.warnings.append(
                        f"batch {number}/{total_batches} timed out; "
                        f"rows of batches 1..{number - 1} remain committed"
                    )
                    self._state(job, ImportState.FAILED)
                    return self._finish(
                        job, counters, started, kind=ErrorKind.TIMEOUT, message=f"batch {number} timed out: {timed_out}"
                    )
                counters.total += len(batch)
                counters.success += batch_counters.success
                counters.failed += batch_counters.failed
                counters.skipped += batch_counters.skipped
                counters.warnings.extend(batch_counters.warnings)

                percent = counters.total * 100 // len(rows)
                sink.update_batch_info(number, batch_size, total_batches)
                sink.update_statistics(len(rows), counters.total, counters.success, counters.failed)
                sink.update_current_row(batch[-1].row_number, len(rows))
                sink.update_progress(percent, f"batch {number}/{total_batches}: {counters.total}/{len(rows)} rows")

        self._state(job, ImportState.COMPLETED)
        result = self._finish(job, counters, started)
        logger.info("import into %s %s", job.target_table, result.summary())
        return result

    def _write_batch(
        self,
        conn: Any,
        job: ImportJob,
        source: _OpenedSource,
        indexes: list[int],
        batch: Sequence[SourceRow],
        number: int,
    ) -> tuple[_Counters, str | None]:
        """Coerce and insert one batch. Returns its counters and, on timeout, the driver message."""
        handle = job.target
        counters = _Counters()
        prepared: list[tuple[Any, ...]] = []
        for row in batch:
            values = [row.values[i - 1] if i - 1 < len(row.values) else None for i in indexes]
            if job.skip_empty_rows and all(is_blank(v) for v in values):
                counters.skipped += 1
                continue
            if not job.split_each_row and row.is_merge_continuation:
                # 結合セルの継続行は上の行に畳み込む
                counters.skipped += 1
                continue
            coerced = self._coerce_row(job, source, row, values, counters)
            if coerced is not None:
                prepared.append(coerced)

        if not prepared:
            return counters, None

        names = [m.target_field_name for m in job.mappings]
        cur = conn.cursor()
        try:
            batch_insert(cur, handle.sql_dialect, job.target_table, names, prepared)
            conn.commit()
        except Exception as e:
            rollback(conn, handle)
            cause = e.__cause__ if isinstance(e, BatchInsertError) and e.__cause__ is not None else e
            if handle.is_timeout(cause):
                return counters, str(cause)
            counters.failed += len(prepared)
            message = f"batch {number}: {len(prepared)} rows failed: {cause}"
            counters.warnings.append(message)
            logger.warning(message)
            self._record(source, -1, BATCH_INSERT_FAILED, str(cause))
            return counters, None
        finally:
            cur.close()
        counters.success += len(prepared)
        logger.debug("batch %d committed rows=%d", number, len(prepared))
        return counters, None

    def _coerce_row(
        self,
        job: ImportJob,
        source: _OpenedSource,
        row: SourceRow,
        values: list[Any],
        counters: _Counters,
    ) -> tuple[Any, ...] | None:
        out: list[Any] = []
        for mapping, value in zip(job.mappings, values):
            try:
                coerced = coerce_cell(value, mapping.target_field_type)
                if coerced is None and mapping.is_required:
                    raise ValueError("required value is blank")
            except (ValueError, ArithmeticError) as e:
                counters.failed += 1
                counters.warnings.append(
                    f"row {row.row_number}: column {mapping.source_column_letter} "
                    f"({mapping.target_field_name}): {e}"
                )
                self._record(source, row.row_number, ErrorKind.ROW_COERCION_FAILED.value, str(e))
                return None
            out.append(coerced)
        return tuple(out)

    # ----------------------------------------------------------------- helpers
    def _record(self, source: _OpenedSource, row: int, error_type: str, message: str) -> None:
        if self.error_log is not None:
            self.error_log.append(ErrorRecord.create(source.file, source.sheet, row, error_type, message))

    def _finish(
        self,
        job: ImportJob,
        counters: _Counters,
        started: float,
        *,
        kind: ErrorKind | None = None,
        message: str | None = None,
        dialect: str | None = None,
    ) -> ImportResult:
        return ImportResult(
            total_rows=counters.total,
            success_rows=counters.success,
            failed_rows=counters.failed,
            skipped_rows=counters.skipped,
            duration_ms=int((time.perf_counter() - started) * 1000),
            warnings=tuple(counters.warnings),
            error_kind=kind,
            error_message=message,
            dialect=dialect or job.target.name,
        )

    def _state(self, job: ImportJob, state: ImportState) -> None:
        logger.debug("import %s -> %s", job.target_table, state.value)


def _validate_mappings(mappings: Sequence[FieldMapping], table: str) -> list[int]:
    """Check the mapping set; returns the 1-based source column index per mapping."""
    if not table or not table.strip():
        raise EngineError(ErrorKind.INVALID_MAPPING, "target table name is empty")
    if not mappings:
        raise EngineError(ErrorKind.INVALID_MAPPING, "no field mappings")
    seen: set[str] = set()
    indexes: list[int] = []
    for m in mappings:
        name = (m.target_field_name or "").strip()
        if not name:
            raise EngineError(
                ErrorKind.INVALID_MAPPING, f"empty target field name for column {m.source_column_letter}"
            )
        if name in seen:
            raise EngineError(ErrorKind.INVALID_MAPPING, f"duplicate target field name: {name}")
        seen.add(name)
        try:
            indexes.append(column_index(m.source_column_letter))
        except ValueError as e:
            raise EngineError(ErrorKind.INVALID_MAPPING, f"{name}: {e}") from e
    return indexes


def _open_source(job: ImportJob) -> _OpenedSource:
    source = job.source
    if isinstance(source, InMemorySource):
        rows = [SourceRow(row_number=i, values=tuple(r)) for i, r in enumerate(source.rows, start=1)]
        return _OpenedSource(rows=rows, file=source.display_name, sheet="")
    reader = SchemaReader(source)
    header_row = reader.resolve_header_row()
    rows = list(reader.iter_data_rows(header_row))
    return _OpenedSource(rows=rows, file=source.path.name, sheet=reader.sheet_name or "")
