from __future__ import annotations

import logging
import time
from datetime import date, datetime, time as dt_time, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font, PatternFill
from openpyxl.utils.exceptions import IllegalCharacterError, InvalidFileException

from ..excel.columns import column_letter
from ..models.errors import EngineError, ErrorKind
from ..models.jobs import ImportJob, OutputTarget, TableTarget, WorksheetTarget
from ..models.mapping import FieldMapping
from ..models.results import ImportResult, QueryFailure, QueryResult, QuerySuccess
from ..models.source import InMemorySource
from .import_engine import BatchImportEngine
from .progress import CancellationToken, NullProgressSink, ProgressSink

"""Output routing for query results.

- table: one-to-one mappings (column name / neutral type kept, letter by
  position) and the regular BatchImportEngine over an InMemorySource
- worksheet: openpyxl write after the last used row; a bold, grey-filled
  header only when the sheet is empty; optional clear first. Progress is
  reported and cancellation checked every PROGRESS_CHUNK_ROWS rows; a
  cancelled export leaves the file untouched. Values openpyxl rejects
  (timezone-aware datetimes, control characters) are normalised first.

A failed query is passed through as a failed ImportResult. A workbook that is
locked by another process (Office owner file ``~$name`` or PermissionError)
fails with SINK_UNAVAILABLE; there is no retry.
"""

__all__ = [
    "OutputRouter",
    "result_mappings",
]

logger = logging.getLogger(__name__)

WORKSHEET_DIALECT = "Worksheet"
PROGRESS_CHUNK_ROWS = 1000  # 進捗通知 / キャンセル確認の単位

HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(fill_type="solid", start_color="D9D9D9", end_color="D9D9D9")


def result_mappings(result: QuerySuccess) -> list[FieldMapping]:
    return [
        FieldMapping(
            source_column_letter=column_letter(i),
            source_column_name=col.name,
            target_field_name=col.name,
            target_field_type=col.type,
        )
        for i, col in enumerate(result.columns, start=1)
    ]


def _passthrough(result: QueryFailure) -> ImportResult:
    return ImportResult.failure(
        result.error_kind,
        result.error_message,
        duration_ms=result.duration_ms,
        dialect=result.dialect,
    )


class OutputRouter:
    def __init__(self, import_engine: BatchImportEngine | None = None) -> None:
        self.import_engine = import_engine if import_engine is not None else BatchImportEngine()

    def route(
        self,
        result: QueryResult,
        target: OutputTarget,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> ImportResult:
        if isinstance(target, TableTarget):
            return self.to_table(result, target, sink=sink, cancel=cancel)
        return self.to_worksheet(result, target, sink=sink, cancel=cancel)

    def to_table(
        self,
        result: QueryResult,
        target: TableTarget,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> ImportResult:
        if isinstance(result, QueryFailure):
            return _passthrough(result)
        if not result.columns:
            return ImportResult.failure(
                ErrorKind.INVALID_MAPPING, "query returned no columns", dialect=target.dialect.name
            )
        job = ImportJob(
            source=InMemorySource(columns=tuple(c.name for c in result.columns), rows=result.rows),
            mappings=tuple(result_mappings(result)),
            target=target.dialect,
            target_table=target.table_name,
            clear_before_import=target.clear_before_write,
        )
        return self.import_engine.run(job, sink=sink, cancel=cancel)

    def to_worksheet(
        self,
        result: QueryResult,
        target: WorksheetTarget,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> ImportResult:
        if isinstance(result, QueryFailure):
            return _passthrough(result)
        sink = sink if sink is not None else NullProgressSink()
        started = time.perf_counter()
        try:
            written = _write_worksheet(result, target, sink, cancel)
        except EngineError as e:
            logger.error("worksheet output failed: %s", e)
            warnings = (f"{e.message}; {target.file_path.name} left unchanged",) if e.kind == ErrorKind.CANCELLED else ()
            outcome = ImportResult.failure(
                e.kind, e.message, duration_ms=_elapsed_ms(started), dialect=WORKSHEET_DIALECT, warnings=warnings
            )
        else:
            logger.info("wrote %d rows to %s!%s", written, target.file_path.name, target.sheet_name)
            outcome = ImportResult(
                total_rows=written,
                success_rows=written,
                failed_rows=0,
                skipped_rows=0,
                duration_ms=_elapsed_ms(started),
                dialect=WORKSHEET_DIALECT,
            )
        sink.set_status(outcome.summary())
        return outcome


def _lock_file(path: Path) -> Path:
    return path.with_name(f"~${path.name}")


def _write_worksheet(
    result: QuerySuccess,
    target: WorksheetTarget,
    sink: ProgressSink,
    cancel: CancellationToken | None,
) -> int:
    """Write into the sheet and save. Nothing is saved when the export is cancelled."""
    path = Path(target.file_path)
    if _lock_file(path).exists():
        raise EngineError(ErrorKind.SINK_UNAVAILABLE, f"workbook is open in another program: {path}")
    try:
        if path.exists():
            wb = load_workbook(path)
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            wb = Workbook()
            # 新規ブックの既定シートを出力先シートとして使う
            wb.active.title = target.sheet_name
    except PermissionError as e:
        raise EngineError(ErrorKind.SINK_UNAVAILABLE, f"cannot open workbook {path}: {e}") from e
    except (InvalidFileException, BadZipFile, KeyError, ValueError, OSError) as e:
        raise EngineError(ErrorKind.SINK_UNAVAILABLE, f"cannot read workbook {path}: {e}") from e

    total = len(result.rows)
    chunks = max(1, -(-total // PROGRESS_CHUNK_ROWS))
    try:
        if target.sheet_name in wb.sheetnames:
            ws = wb[target.sheet_name]
        else:
            ws = wb.create_sheet(target.sheet_name)
        if target.clear_sheet_before_write and ws.max_row > 0:
            ws.delete_rows(1, ws.max_row)
        if _sheet_is_empty(ws):
            _write_row(ws, 1, [c.name for c in result.columns])
            _style_header(ws, len(result.columns))
            next_row = 2
        else:
            next_row = ws.max_row + 1

        for number in range(1, chunks + 1):
            start = (number - 1) * PROGRESS_CHUNK_ROWS
            if cancel is not None and cancel.cancelled:
                raise EngineError(ErrorKind.CANCELLED, f"export cancelled after {start}/{total} rows")
            chunk = result.rows[start:start + PROGRESS_CHUNK_ROWS]
            for offset, row in enumerate(chunk, start=start):
                _write_row(ws, next_row + offset, row)
            done = start + len(chunk)
            sink.update_batch_info(number, PROGRESS_CHUNK_ROWS, chunks)
            sink.update_statistics(total, done, done, 0)
            sink.update_current_row(done, total)
            sink.update_progress(done * 100 // total if total else 100, f"{done}/{total} rows written")

        try:
            wb.save(path)
        except PermissionError as e:
            raise EngineError(ErrorKind.SINK_UNAVAILABLE, f"cannot save workbook {path}: {e}") from e
    finally:
        wb.close()
    return total


def _sheet_is_empty(ws: Any) -> bool:
    if ws.max_row > 1 or ws.max_column > 1:
        return False
    return ws.cell(row=1, column=1).value is None


def _style_header(ws: Any, width: int) -> None:
    for col in range(1, width + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL


def _write_row(ws: Any, row: int, values: Any) -> None:
    # ws.append は max_row 基準のため削除後の空行を考慮して明示的に位置指定
    for col, value in enumerate(values, start=1):
        try:
            ws.cell(row=row, column=col, value=_cell_value(value))
        except (TypeError, ValueError, IllegalCharacterError) as e:
            raise EngineError(
                ErrorKind.SINK_UNAVAILABLE, f"cannot write cell {column_letter(col)}{row}: {e}"
            ) from e


def _cell_value(value: Any) -> Any:
    """Normalise a driver value into something openpyxl accepts."""
    if value is None or isinstance(value, (bool, int, float, Decimal)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (datetime, dt_time)):
        # Excel はタイムゾーンを持てない: 壁時計時刻のまま落とす
        return value.replace(tzinfo=None)
    if isinstance(value, (date, timedelta)):
        return value
    return ILLEGAL_CHARACTERS_RE.sub("", value if isinstance(value, str) else str(value))


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
