from __future__ import annotations

from ..models.results import ImportResult, QueryFailure, QueryResult

"""SUMMARY line rendering for the CLI.

Formats (single line, key=value pairs separated by one space):

    SUMMARY job=<name> status=<ok|KIND> rows=<total> success=<n> failed=<n> skipped=<n> elapsed_sec=<s> throughput_rps=<r>
    SUMMARY job=<name> status=<ok|KIND> rows=<n> affected=<n> elapsed_sec=<s>
"""

__all__ = [
    "render_summary_line",
    "render_query_summary_line",
    "format_seconds",
]


def format_seconds(value: float) -> str:
    """Integral values without decimals, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(round(value, 3))


def _status(kind: object) -> str:
    return "ok" if kind is None else kind.value  # type: ignore[attr-defined]


def render_summary_line(job_name: str, result: ImportResult) -> str:
    """Render the SUMMARY line of an import (or routed query output).

    Examples:
        >>> r = ImportResult(total_rows=10, success_rows=9, failed_rows=1, skipped_rows=0, duration_ms=2000)
        >>> render_summary_line("sales", r)
        'SUMMARY job=sales status=ok rows=10 success=9 failed=1 skipped=0 elapsed_sec=2 throughput_rps=4.5'
    """
    elapsed = result.duration_ms / 1000
    throughput = result.success_rows / elapsed if elapsed > 0 else 0
    return (
        f"SUMMARY job={job_name} "
        f"status={_status(result.error_kind)} "
        f"rows={result.total_rows} "
        f"success={result.success_rows} "
        f"failed={result.failed_rows} "
        f"skipped={result.skipped_rows} "
        f"elapsed_sec={format_seconds(elapsed)} "
        f"throughput_rps={format_seconds(throughput)}"
    )


def render_query_summary_line(job_name: str, result: QueryResult) -> str:
    if isinstance(result, QueryFailure):
        return (
            f"SUMMARY job={job_name} status={result.error_kind.value} rows=0 affected=0 "
            f"elapsed_sec={format_seconds(result.duration_ms / 1000)}"
        )
    return (
        f"SUMMARY job={job_name} status=ok rows={result.row_count} affected={result.affected_rows} "
        f"elapsed_sec={format_seconds(result.duration_ms / 1000)}"
    )
