from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

"""Source descriptors for the import pipeline.

A SourceDescriptor addresses a spreadsheet sheet or a CSV file on disk.
InMemorySource wraps an already materialized row set (e.g. a query result)
so that the same BatchImportEngine can stream it into a table.
"""

__all__ = [
    "SourceKind",
    "SourceDescriptor",
    "ColumnCell",
    "InMemorySource",
    "SourceRow",
]


class SourceKind(Enum):
    SPREADSHEET = "spreadsheet"
    CSV = "csv"


@dataclass(frozen=True)
class SourceDescriptor:
    """Identifies what to read.

    header_row is 1-based. None requests auto-detection over rows 1..3.
    """
    kind: SourceKind
    path: Path
    sheet_name: str | None = None  # None -> 先頭シート
    header_row: int | None = 1

    @staticmethod
    def from_path(
        path: str | Path, sheet_name: str | None = None, header_row: int | None = 1
    ) -> SourceDescriptor:
        p = Path(path)
        kind = SourceKind.CSV if p.suffix.lower() == ".csv" else SourceKind.SPREADSHEET
        return SourceDescriptor(kind=kind, path=p, sheet_name=sheet_name, header_row=header_row)

    @property
    def display_name(self) -> str:
        if self.sheet_name:
            return f"{self.path.name}!{self.sheet_name}"
        return self.path.name


@dataclass(frozen=True)
class ColumnCell:
    """A single cell observed while scanning a header or data row (1-based coordinates)."""
    row_index: int
    column_index: int
    raw_value: Any


@dataclass(frozen=True)
class SourceRow:
    """One data row after merged-cell resolution.

    values are positional (index 0 == column A). is_merge_continuation is True
    when the row owns no values of its own and everything it carries was
    replicated from a vertical merge region that starts above it.
    """
    row_number: int
    values: tuple[Any, ...]
    is_merge_continuation: bool = False


@dataclass(frozen=True)
class InMemorySource:
    """Row set that bypasses SchemaReader (columns are already named)."""
    columns: tuple[str, ...]
    rows: tuple[tuple[Any, ...], ...] = field(default_factory=tuple)

    @property
    def display_name(self) -> str:
        return "<query result>"
