from __future__ import annotations

import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path

from openpyxl import Workbook, load_workbook

import xlport.services.output_router as output_router
from xlport.models.errors import ErrorKind
from xlport.models.jobs import TableTarget, WorksheetTarget
from xlport.models.results import ColumnInfo, QueryFailure, QuerySuccess
from xlport.services.output_router import WORKSHEET_DIALECT, OutputRouter, result_mappings
from xlport.services.progress import CancellationToken, RecordingProgressSink


def _result(rows=(("C001", 10.5, date(2024, 1, 5)), ("C002", 20.0, date(2024, 2, 10)))) -> QuerySuccess:
    return QuerySuccess(
        columns=(ColumnInfo("customer_id", "TEXT"), ColumnInfo("amount", "FLOAT"), ColumnInfo("sold_on", "DATE")),
        rows=tuple(rows),
        affected_rows=0,
        duration_ms=3,
    )


def _sheet_values(path: Path, sheet: str) -> list[tuple]:
    wb = load_workbook(path)
    try:
        return [tuple(r) for r in wb[sheet].iter_rows(values_only=True)]
    finally:
        wb.close()


def test_result_mappings_are_one_to_one():
    mappings = result_mappings(_result())
    assert [(m.source_column_letter, m.target_field_name, m.target_field_type) for m in mappings] == [
        ("A", "customer_id", "TEXT"),
        ("B", "amount", "FLOAT"),
        ("C", "sold_on", "DATE"),
    ]


def test_to_table_imports_rows(sqlite_handle, sqlite_path):
    sink = RecordingProgressSink()
    out = OutputRouter().to_table(_result(), TableTarget(sqlite_handle, "sales_copy"), sink=sink)
    assert out.is_success
    assert (out.total_rows, out.success_rows) == (2, 2)
    assert sink.calls("set_status")
    conn = sqlite3.connect(sqlite_path)
    try:
        assert conn.execute('SELECT * FROM "sales_copy"').fetchall() == [
            ("C001", 10.5, "2024-01-05"),
            ("C002", 20.0, "2024-02-10"),
        ]
    finally:
        conn.close()


def test_to_table_clear_before_write(sqlite_handle, sqlite_path):
    router = OutputRouter()
    router.to_table(_result(), TableTarget(sqlite_handle, "t"))
    out = router.route(_result(rows=[("C009", 1.0, None)]), TableTarget(sqlite_handle, "t", clear_before_write=True))
    assert out.success_rows == 1
    conn = sqlite3.connect(sqlite_path)
    try:
        assert conn.execute('SELECT customer_id FROM "t"').fetchall() == [("C009",)]
    finally:
        conn.close()


def test_to_table_without_columns_is_invalid(sqlite_handle):
    empty = QuerySuccess(columns=(), rows=(), affected_rows=4, duration_ms=1)
    out = OutputRouter().to_table(empty, TableTarget(sqlite_handle, "t"))
    assert out.error_kind == ErrorKind.INVALID_MAPPING


def test_failed_query_passes_through(sqlite_handle, temp_workdir):
    failure = QueryFailure(ErrorKind.QUERY_FAILED, "no such table: x", duration_ms=7, dialect="SQLite")
    router = OutputRouter()
    for target in (TableTarget(sqlite_handle, "t"), WorksheetTarget(temp_workdir / "out.xlsx", "Result")):
        out = router.route(failure, target)
        assert out.error_kind == ErrorKind.QUERY_FAILED
        assert out.error_message == "no such table: x"
        assert out.total_rows == 0
    assert not (temp_workdir / "out.xlsx").exists()


def test_to_worksheet_creates_workbook_with_header(temp_workdir):
    path = temp_workdir / "reports" / "out.xlsx"
    out = OutputRouter().route(_result(), WorksheetTarget(path, "Result"))
    assert out.is_success
    assert out.dialect == WORKSHEET_DIALECT
    assert (out.total_rows, out.success_rows) == (2, 2)
    wb = load_workbook(path)
    try:
        assert wb.sheetnames == ["Result"]
    finally:
        wb.close()
    values = _sheet_values(path, "Result")
    assert values[0] == ("customer_id", "amount", "sold_on")
    assert values[1][:2] == ("C001", 10.5)
    assert len(values) == 3


def test_to_worksheet_appends_without_repeating_header(temp_workdir):
    path = temp_workdir / "out.xlsx"
    router = OutputRouter()
    router.to_worksheet(_result(), WorksheetTarget(path, "Result"))
    router.to_worksheet(_result(rows=[("C003", 1.0, None)]), WorksheetTarget(path, "Result"))
    values = _sheet_values(path, "Result")
    assert [v[0] for v in values] == ["customer_id", "C001", "C002", "C003"]


def test_to_worksheet_clear_rewrites_header(temp_workdir):
    path = temp_workdir / "out.xlsx"
    router = OutputRouter()
    router.to_worksheet(_result(), WorksheetTarget(path, "Result"))
    router.to_worksheet(_result(rows=[("C003", 1.0, None)]), WorksheetTarget(path, "Result", clear_sheet_before_write=True))
    values = _sheet_values(path, "Result")
    assert [v[0] for v in values] == ["customer_id", "C003"]


def test_to_worksheet_adds_sheet_to_existing_workbook(temp_workdir):
    path = temp_workdir / "book.xlsx"
    wb = Workbook()
    wb.active.title = "Keep"
    wb.active["A1"] = "untouched"
    wb.save(path)
    OutputRouter().to_worksheet(_result(), WorksheetTarget(path, "Result"))
    assert _sheet_values(path, "Keep") == [("untouched",)]
    assert len(_sheet_values(path, "Result")) == 3


def test_locked_workbook_is_sink_unavailable(temp_workdir):
    path = temp_workdir / "out.xlsx"
    (temp_workdir / "~$out.xlsx").write_bytes(b"owner")
    out = OutputRouter().to_worksheet(_result(), WorksheetTarget(path, "Result"))
    assert out.error_kind == ErrorKind.SINK_UNAVAILABLE
    assert out.dialect == WORKSHEET_DIALECT
    assert not path.exists()


def test_unreadable_workbook_is_sink_unavailable(temp_workdir):
    path = temp_workdir / "out.xlsx"
    path.write_bytes(b"garbage")
    out = OutputRouter().to_worksheet(_result(), WorksheetTarget(path, "Result"))
    assert out.error_kind == ErrorKind.SINK_UNAVAILABLE


def test_bytes_are_written_as_hex(temp_workdir):
    path = temp_workdir / "out.xlsx"
    result = QuerySuccess(columns=(ColumnInfo("b", "BLOB"),), rows=((b"\x01\xff",),), affected_rows=0, duration_ms=0)
    OutputRouter().to_worksheet(result, WorksheetTarget(path, "Bin"))
    assert _sheet_values(path, "Bin")[1] == ("01ff",)


def test_header_row_is_bold_with_grey_fill(temp_workdir):
    path = temp_workdir / "styled.xlsx"
    OutputRouter().to_worksheet(_result(), WorksheetTarget(path, "Sales"))
    wb = load_workbook(path)
    try:
        header = wb["Sales"]["A1"]
        assert header.font.bold
        assert header.fill.fill_type == "solid"
        assert header.fill.fgColor.rgb.endswith("D9D9D9")
        assert not wb["Sales"]["A2"].font.bold
    finally:
        wb.close()


def test_values_openpyxl_rejects_are_normalised(temp_workdir):
    path = temp_workdir / "norm.xlsx"
    result = QuerySuccess(
        columns=(ColumnInfo("at", "DATETIME"), ColumnInfo("note", "TEXT"), ColumnInfo("tags", "TEXT")),
        rows=((datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc), "bad\x01text", ["a", "b"]),),
        affected_rows=0,
        duration_ms=0,
    )
    out = OutputRouter().to_worksheet(result, WorksheetTarget(path, "Norm"))
    assert out.is_success
    assert _sheet_values(path, "Norm")[1] == (datetime(2024, 1, 1, 9, 30), "badtext", "['a', 'b']")


def test_cell_write_error_becomes_failed_result(temp_workdir, monkeypatch):
    def _reject(value):
        raise ValueError(f"Cannot convert {value!r} to Excel")

    monkeypatch.setattr(output_router, "_cell_value", _reject)
    path = temp_workdir / "broken.xlsx"
    out = OutputRouter().to_worksheet(_result(), WorksheetTarget(path, "Sales"))
    assert out.error_kind == ErrorKind.SINK_UNAVAILABLE
    assert "Cannot convert" in out.error_message
    assert not path.exists()


def test_to_worksheet_reports_progress_per_chunk(temp_workdir):
    rows = [(f"C{i:04d}", float(i), date(2024, 1, 1)) for i in range(2500)]
    sink = RecordingProgressSink()
    out = OutputRouter().to_worksheet(_result(rows), WorksheetTarget(temp_workdir / "big.xlsx", "Sales"), sink=sink)
    assert out.success_rows == 2500
    assert sink.calls("update_batch_info") == [(1, 1000, 3), (2, 1000, 3), (3, 1000, 3)]
    assert sink.calls("update_progress")[-1][0] == 100
    assert sink.calls("set_status") == [(out.summary(),)]


class _CancelAfterFirstChunk(RecordingProgressSink):
    def __init__(self, token: CancellationToken) -> None:
        super().__init__()
        self.token = token

    def update_batch_info(self, batch_number, batch_size, total_batches):
        super().update_batch_info(batch_number, batch_size, total_batches)
        self.token.cancel()


def test_cancelled_export_leaves_file_untouched(temp_workdir):
    path = temp_workdir / "cancel.xlsx"
    rows = [(f"C{i:04d}", float(i), date(2024, 1, 1)) for i in range(2500)]
    token = CancellationToken()
    out = OutputRouter().to_worksheet(
        _result(rows), WorksheetTarget(path, "Sales"), sink=_CancelAfterFirstChunk(token), cancel=token
    )
    assert out.error_kind == ErrorKind.CANCELLED
    assert "1000/2500" in out.error_message
    assert out.warnings == ("export cancelled after 1000/2500 rows; cancel.xlsx left unchanged",)
    assert not path.exists()


def test_route_passes_progress_to_worksheet(temp_workdir):
    sink = RecordingProgressSink()
    OutputRouter().route(_result(), WorksheetTarget(temp_workdir / "r.xlsx", "S"), sink=sink)
    assert sink.calls("update_batch_info") == [(1, 1000, 1)]
