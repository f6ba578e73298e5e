from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .errors import ErrorKind

"""Result models for import / query / output operations.

ImportResult is produced exactly once per job and is immutable afterwards.
Failure keeps the partial counters (cancellation / timeout preserve rows that
were committed by earlier batches), so it is a single record with an optional
error_kind rather than two separate types.

QueryResult is a discriminated union: QuerySuccess | QueryFailure, never both.
"""

__all__ = [
    "ImportResult",
    "ColumnInfo",
    "QuerySuccess",
    "QueryFailure",
    "QueryResult",
    "ConnectionCheck",
]


@dataclass(frozen=True)
class ImportResult:
    """Outcome of one BatchImportEngine / OutputRouter run.

    Invariant: success_rows + failed_rows + skipped_rows == total_rows
    (total_rows counts processed rows, which can be fewer than the source
    holds when max_rows or an early stop applies).
    """
    total_rows: int
    success_rows: int
    failed_rows: int
    skipped_rows: int
    duration_ms: int
    warnings: tuple[str, ...] = field(default_factory=tuple)
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    dialect: str | None = None

    @property
    def is_success(self) -> bool:
        return self.error_kind is None

    @property
    def processed_rows(self) -> int:
        return self.total_rows

    @staticmethod
    def failure(
        kind: ErrorKind,
        message: str,
        *,
        duration_ms: int = 0,
        dialect: str | None = None,
        total_rows: int = 0,
        success_rows: int = 0,
        failed_rows: int = 0,
        skipped_rows: int = 0,
        warnings: tuple[str, ...] = (),
    ) -> ImportResult:
        return ImportResult(
            total_rows=total_rows,
            success_rows=success_rows,
            failed_rows=failed_rows,
            skipped_rows=skipped_rows,
            duration_ms=duration_ms,
            warnings=warnings,
            error_kind=kind,
            error_message=message,
            dialect=dialect,
        )

    def summary(self) -> str:
        """Human-readable one-liner for the presentation layer."""
        head = "completed" if self.is_success else f"failed ({self.error_kind.value})"  # type: ignore[union-attr]
        text = (
            f"{head}: total={self.total_rows} success={self.success_rows} "
            f"failed={self.failed_rows} skipped={self.skipped_rows} "
            f"duration_ms={self.duration_ms}"
        )
        if not self.is_success and self.error_message:
            text += f" error={self.error_message}"
        return text


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str  # neutral SQL type


@dataclass(frozen=True)
class QuerySuccess:
    columns: tuple[ColumnInfo, ...]
    rows: tuple[tuple[Any, ...], ...]
    affected_rows: int
    duration_ms: int

    is_success = True

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class QueryFailure:
    error_kind: ErrorKind
    error_message: str  # driver の生エラーテキスト
    duration_ms: int = 0
    dialect: str | None = None

    is_success = False


QueryResult = Union[QuerySuccess, QueryFailure]


@dataclass(frozen=True)
class ConnectionCheck:
    """Outcome of DialectHandle.test_connection."""
    ok: bool
    dialect: str
    message: str
    duration_ms: int = 0
    error_kind: ErrorKind | None = None
