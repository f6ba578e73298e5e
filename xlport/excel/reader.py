from __future__ import annotations

import csv
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from zipfile import BadZipFile

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..models.errors import EngineError, ErrorKind
from ..models.source import ColumnCell, SourceDescriptor, SourceKind, SourceRow
from .columns import blank_header_name

"""Spreadsheet / CSV schema reader.

- xlsx is opened with openpyxl (merge ranges are only visible there) and the
  raw grid is kept as an object-dtype DataFrame, row/col 0-based internally.
- CSV is read with pandas.read_csv as plain strings; blank lines are dropped so
  the header is the first non-empty line. Short rows are padded to the widest
  line and trailing all-blank columns are dropped.
- Merged-cell resolution: any coordinate inside a merge region reads the value
  of the region's top-left cell, for header and data rows alike.
- Header auto-detection scans rows 1..3 only (max non-blank count, earliest
  row wins ties).
"""

__all__ = [
    "HEADER_SCAN_ROWS",
    "MergeRegion",
    "SchemaReader",
    "detect_header_row",
    "read_columns",
    "is_blank",
]

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 3


@dataclass(frozen=True)
class MergeRegion:
    """1-based inclusive bounds of a merged range."""
    min_row: int
    min_col: int
    max_row: int
    max_col: int

    def contains(self, row: int, col: int) -> bool:
        return self.min_row <= row <= self.max_row and self.min_col <= col <= self.max_col


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


class SchemaReader:
    """Reads one sheet (or CSV file) addressed by a SourceDescriptor.

    The workbook is loaded lazily on first access and kept for the lifetime of
    the reader; one reader serves header detection, column naming and data
    row iteration for a single job.
    """

    def __init__(self, source: SourceDescriptor) -> None:
        self.source = source
        self._raw: pd.DataFrame | None = None
        self._resolved: pd.DataFrame | None = None
        self._merges: list[MergeRegion] = []
        self.sheet_name: str | None = source.sheet_name

    # ------------------------------------------------------------------ loading
    def _ensure_loaded(self) -> None:
        if self._raw is not None:
            return
        path = Path(self.source.path)
        if not path.exists():
            raise EngineError(ErrorKind.SOURCE_NOT_FOUND, f"source file not found: {path}")
        if self.source.kind == SourceKind.CSV:
            raw = _read_csv_grid(path)
            merges: list[MergeRegion] = []
        else:
            raw, merges, self.sheet_name = _read_workbook_grid(path, self.source.sheet_name)
        self._raw = raw
        self._merges = merges
        self._resolved = _apply_merges(raw, merges)
        logger.debug(
            "loaded source=%s sheet=%s rows=%d cols=%d merges=%d",
            path.name, self.sheet_name, raw.shape[0], raw.shape[1], len(merges),
        )

    @property
    def row_count(self) -> int:
        self._ensure_loaded()
        return int(self._raw.shape[0])  # type: ignore[union-attr]

    @property
    def column_count(self) -> int:
        self._ensure_loaded()
        return int(self._raw.shape[1])  # type: ignore[union-attr]

    @property
    def merges(self) -> list[MergeRegion]:
        self._ensure_loaded()
        return list(self._merges)

    # -------------------------------------------------------------------- cells
    def cell(self, row: int, col: int) -> ColumnCell:
        """Merge-resolved cell at 1-based (row, col); out-of-extent cells read as None."""
        self._ensure_loaded()
        value: Any = None
        if 1 <= row <= self.row_count and 1 <= col <= self.column_count:
            value = _clean(self._resolved.iat[row - 1, col - 1])  # type: ignore[union-attr]
        return ColumnCell(row_index=row, column_index=col, raw_value=value)

    def row_values(self, row: int) -> tuple[Any, ...]:
        self._ensure_loaded()
        return tuple(_clean(v) for v in self._resolved.iloc[row - 1].tolist())  # type: ignore[union-attr]

    # ------------------------------------------------------------------- header
    def detect_header_row(self) -> int:
        """Pick the row in 1..3 with the most non-blank cells (ties -> earlier row)."""
        self._ensure_loaded()
        best_row = 1
        best_count = -1
        for row in range(1, min(HEADER_SCAN_ROWS, self.row_count) + 1):
            count = sum(1 for v in self.row_values(row) if not is_blank(v))
            if count > best_count:
                best_row, best_count = row, count
        logger.debug("header auto-detect source=%s row=%d non_blank=%d", self.source.display_name, best_row, best_count)
        return best_row

    def resolve_header_row(self, header_row: int | None = None) -> int:
        row = header_row if header_row is not None else self.source.header_row
        if row is None:
            row = self.detect_header_row()
        self._ensure_loaded()
        if row < 1 or row > self.row_count:
            raise EngineError(
                ErrorKind.HEADER_ROW_OUT_OF_RANGE,
                f"header row {row} outside data extent 1..{self.row_count} of {self.source.display_name}",
            )
        return row

    def read_columns(self, header_row: int | None = None) -> list[str]:
        """Ordered column names of the header row; blanks become Col_<letter>."""
        row = self.resolve_header_row(header_row)
        names: list[str] = []
        for idx, value in enumerate(self.row_values(row), start=1):
            if is_blank(value):
                names.append(blank_header_name(idx))
            else:
                names.append(_header_text(value))
        return names

    # --------------------------------------------------------------------- data
    def data_row_count(self, header_row: int | None = None) -> int:
        row = self.resolve_header_row(header_row)
        return self.row_count - row

    def iter_data_rows(self, header_row: int | None = None) -> Iterator[SourceRow]:
        row = self.resolve_header_row(header_row)
        raw = self._raw
        for r in range(row + 1, self.row_count + 1):
            values = self.row_values(r)
            own = [_clean(v) for v in raw.iloc[r - 1].tolist()]  # type: ignore[union-attr]
            continuation = (
                all(is_blank(v) for v in own)
                and any(not is_blank(v) for v in values)
                and self._only_vertical_merge_values(r, values)
            )
            yield SourceRow(row_number=r, values=values, is_merge_continuation=continuation)

    def preview(self, max_rows: int = 5, header_row: int | None = None) -> list[tuple[Any, ...]]:
        rows: list[tuple[Any, ...]] = []
        for source_row in self.iter_data_rows(header_row):
            if len(rows) >= max_rows:
                break
            rows.append(source_row.values)
        return rows

    def _only_vertical_merge_values(self, row: int, values: tuple[Any, ...]) -> bool:
        for col, value in enumerate(values, start=1):
            if is_blank(value):
                continue
            if not any(m.contains(row, col) and m.min_row < row for m in self._merges):
                return False
        return True


def detect_header_row(source: SourceDescriptor) -> int:
    return SchemaReader(source).detect_header_row()


def read_columns(source: SourceDescriptor, header_row: int | None = None) -> list[str]:
    return SchemaReader(source).read_columns(header_row)


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    return value


def _header_text(value: Any) -> str:
    # 数値ヘッダ (例: 2024.0) は整数表記へ
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _csv_width(path: Path) -> int:
    with path.open(newline="", encoding="utf-8-sig") as f:
        return max((len(r) for r in csv.reader(f)), default=0)


def _read_csv_grid(path: Path) -> pd.DataFrame:
    try:
        # 行ごとに列数が異なる CSV (末尾カンマ等) も最大列数で読む
        width = _csv_width(path)
        if width == 0:
            return pd.DataFrame(dtype=object)
        df = pd.read_csv(
            path,
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            encoding="utf-8-sig",
        )
    except pd.errors.EmptyDataError:
        return pd.DataFrame(dtype=object)
    except (pd.errors.ParserError, csv.Error, UnicodeDecodeError, OSError) as e:
        raise EngineError(ErrorKind.SOURCE_UNREADABLE, f"cannot parse csv {path.name}: {e}") from e
    if df.empty:
        return df.astype(object)
    df = df.map(lambda v: v.strip() if isinstance(v, str) else v)
    # 空白のみの行 (", ,") も空行扱いで除去
    mask = df.apply(lambda r: any(not is_blank(v) for v in r), axis=1)
    df = df[mask].reset_index(drop=True)
    # 全行空の末尾列は落とす
    while df.shape[1] > 1 and all(is_blank(v) for v in df.iloc[:, -1]):
        df = df.iloc[:, :-1]
    return df.astype(object)


def _read_workbook_grid(
    path: Path, sheet_name: str | None
) -> tuple[pd.DataFrame, list[MergeRegion], str]:
    try:
        # read_only では merged_cells が取れないため通常モードで開く
        wb = load_workbook(path, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, ValueError, OSError) as e:
        raise EngineError(ErrorKind.SOURCE_UNREADABLE, f"cannot open workbook {path.name}: {e}") from e
    try:
        if sheet_name is None:
            ws = wb.worksheets[0]
        elif sheet_name in wb.sheetnames:
            ws = wb[sheet_name]
        else:
            raise EngineError(
                ErrorKind.SHEET_NOT_FOUND,
                f"sheet '{sheet_name}' not found in {path.name} (available: {wb.sheetnames})",
            )
        max_row, max_col = ws.max_row, ws.max_column
        rows = list(
            ws.iter_rows(min_row=1, max_row=max_row, min_col=1, max_col=max_col, values_only=True)
        )
        if max_row == 1 and max_col == 1 and rows and is_blank(rows[0][0]):
            rows = []
        merges = [
            MergeRegion(rng.min_row, rng.min_col, rng.max_row, rng.max_col)
            for rng in ws.merged_cells.ranges
        ]
        title = ws.title
    finally:
        wb.close()
    df = pd.DataFrame(rows, dtype=object) if rows else pd.DataFrame(dtype=object)
    return df, merges, title


def _apply_merges(raw: pd.DataFrame, merges: list[MergeRegion]) -> pd.DataFrame:
    if not merges:
        return raw
    resolved = raw.copy()
    n_rows, n_cols = resolved.shape
    for m in merges:
        if m.min_row > n_rows or m.min_col > n_cols:
            continue
        top_left = raw.iat[m.min_row - 1, m.min_col - 1]
        for r in range(m.min_row, min(m.max_row, n_rows) + 1):
            for c in range(m.min_col, min(m.max_col, n_cols) + 1):
                resolved.iat[r - 1, c - 1] = top_left
    return resolved
