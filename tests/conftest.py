# Shared pytest fixtures
from __future__ import annotations

import tempfile
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

import pytest
from openpyxl import Workbook

from xlport.db.catalog import DialectCatalog, DialectHandle
from xlport.logging.init import reset_logging


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _fresh_logging():
    # ハンドラが前テストの (閉じた) capsys ストリームを掴まないように
    reset_logging()
    yield
    reset_logging()


WorkbookBuilder = Callable[..., Path]


@pytest.fixture()
def make_workbook(temp_workdir: Path) -> WorkbookBuilder:
    """Build an xlsx under data/: rows are written from A1, merges are 'A1:C1' style ranges."""

    def _build(
        name: str,
        rows: Sequence[Sequence[Any]],
        sheet: str = "Sheet1",
        merges: Iterable[str] = (),
        extra_sheets: dict[str, Sequence[Sequence[Any]]] | None = None,
    ) -> Path:
        wb = Workbook()
        ws = wb.active
        ws.title = sheet
        for r, row in enumerate(rows, start=1):
            for c, value in enumerate(row, start=1):
                if value is not None:
                    ws.cell(row=r, column=c, value=value)
        for rng in merges:
            ws.merge_cells(rng)
        for extra_name, extra_rows in (extra_sheets or {}).items():
            extra = wb.create_sheet(extra_name)
            for extra_row in extra_rows:
                extra.append(list(extra_row))
        path = temp_workdir / "data" / name
        wb.save(path)
        return path

    return _build


@pytest.fixture()
def write_csv(temp_workdir: Path) -> Callable[[str, str], Path]:
    def _write(name: str, text: str) -> Path:
        path = temp_workdir / "data" / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def catalog() -> DialectCatalog:
    return DialectCatalog()


@pytest.fixture()
def sqlite_path(temp_workdir: Path) -> Path:
    return temp_workdir / "target.db"


@pytest.fixture()
def sqlite_conn_str(sqlite_path: Path) -> str:
    return f"Data Source={sqlite_path}"


@pytest.fixture()
def sqlite_handle(catalog: DialectCatalog, sqlite_conn_str: str) -> DialectHandle:
    return catalog.resolve(sqlite_conn_str)
