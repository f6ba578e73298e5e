from __future__ import annotations

from enum import Enum

"""Error taxonomy shared by the import / query / output engines.

Engines raise EngineError internally and convert it into a failure result at
their public boundary (BatchImportEngine.run, SqlExecutionEngine.execute/test,
OutputRouter.to_table/to_worksheet). Values are UPPER_SNAKE so that they can be
written to the JSON Lines error log unchanged.
"""

__all__ = [
    "ErrorKind",
    "EngineError",
]


class ErrorKind(Enum):
    """Classification of terminal (and per-row) failures."""
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    SOURCE_UNREADABLE = "SOURCE_UNREADABLE"
    SHEET_NOT_FOUND = "SHEET_NOT_FOUND"
    HEADER_ROW_OUT_OF_RANGE = "HEADER_ROW_OUT_OF_RANGE"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    DDL_FAILED = "DDL_FAILED"
    ROW_COERCION_FAILED = "ROW_COERCION_FAILED"  # 行単位 (非致命)
    SINK_UNAVAILABLE = "SINK_UNAVAILABLE"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_DIALECT = "UNKNOWN_DIALECT"  # SQLite フォールバック先への接続失敗
    INVALID_MAPPING = "INVALID_MAPPING"
    QUERY_FAILED = "QUERY_FAILED"


class EngineError(Exception):
    """Raised inside the core; carries the kind and, when known, the dialect name."""

    def __init__(self, kind: ErrorKind, message: str, dialect: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.dialect = dialect

    def __str__(self) -> str:
        if self.dialect:
            return f"[{self.kind.value}] ({self.dialect}) {self.message}"
        return f"[{self.kind.value}] {self.message}"
