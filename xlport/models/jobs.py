from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union

from .mapping import FieldMapping
from .source import InMemorySource, SourceDescriptor

if TYPE_CHECKING:
    from ..db.catalog import DialectHandle

"""Job value objects.

ImportJob / QueryJob are constructed once per invocation and never mutated;
they replace the mutable per-dialog state the desktop UI used to carry.
"""

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_TIMEOUT_SECONDS",
    "ImportJob",
    "QueryJob",
    "TableTarget",
    "WorksheetTarget",
    "OutputTarget",
    "parse_output_target",
]

DEFAULT_BATCH_SIZE = 200
DEFAULT_TIMEOUT_SECONDS = 300


@dataclass(frozen=True)
class ImportJob:
    """One import run: source rows -> mappings -> target table."""
    source: SourceDescriptor | InMemorySource
    mappings: tuple[FieldMapping, ...]
    target: DialectHandle
    target_table: str
    clear_before_import: bool = False
    skip_empty_rows: bool = True
    split_each_row: bool = True
    batch_size: int | None = None  # None -> engine default
    max_rows: int | None = None
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS


@dataclass(frozen=True)
class QueryJob:
    """One SQL execution. row_cap applies to preview/test calls only."""
    sql_text: str
    source: DialectHandle
    parameters: dict[str, Any] = field(default_factory=dict)
    row_cap: int | None = None
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS


@dataclass(frozen=True)
class TableTarget:
    dialect: DialectHandle
    table_name: str
    clear_before_write: bool = False


@dataclass(frozen=True)
class WorksheetTarget:
    file_path: Path
    sheet_name: str
    clear_sheet_before_write: bool = False


OutputTarget = Union[TableTarget, WorksheetTarget]


def parse_output_target(
    text: str, dialect: DialectHandle | None = None, clear: bool = False
) -> OutputTarget:
    """Decode the single-string output target.

    ``<path>!<sheet>`` addresses a worksheet; a string without ``!`` is a table
    name on ``dialect``.
    """
    text = text.strip()
    if "!" in text:
        # パス側に '!' を含むケースに備え最後の '!' で分割
        path_part, sheet = text.rsplit("!", 1)
        if not path_part or not sheet:
            raise ValueError(f"invalid worksheet target: {text!r}")
        return WorksheetTarget(file_path=Path(path_part), sheet_name=sheet, clear_sheet_before_write=clear)
    if not text:
        raise ValueError("empty output target")
    if dialect is None:
        raise ValueError(f"table target {text!r} requires a target connection")
    return TableTarget(dialect=dialect, table_name=text, clear_before_write=clear)
