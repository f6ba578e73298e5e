from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

One record per failed row (row_number of the source sheet) or per job-level
failure (row=-1 when no row applies, e.g. a failed clear or a dropped batch).
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: source file name (or "<query result>")
        sheet: sheet name, "" for CSV / in-memory sources
        row: 1-based source row number, -1 when unknown
        error_type: ErrorKind value (UPPER_SNAKE)
        db_message: coercion reason or raw driver message
    """
    timestamp: str
    file: str
    sheet: str
    row: int
    error_type: str
    db_message: str

    @staticmethod
    def create(file: str, sheet: str, row: int, error_type: str, db_message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            row=row,
            error_type=error_type,
            db_message=db_message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
