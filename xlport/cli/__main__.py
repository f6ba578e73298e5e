from __future__ import annotations

import argparse
import sys
from pathlib import Path

import pandas as pd
from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, AppConfig, ConfigError, ImportConfig, QueryConfig, load_config
from ..db.catalog import DialectCatalog
from ..db.table_ops import list_tables, search_tables
from ..excel.reader import SchemaReader
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import get_logger, log_summary, set_debug, setup_logging
from ..models.errors import EngineError
from ..models.jobs import ImportJob, QueryJob, parse_output_target
from ..models.results import ImportResult, QueryFailure, QuerySuccess
from ..models.source import SourceDescriptor
from ..services.field_mapping import generate_mappings
from ..services.import_engine import BatchImportEngine
from ..services.output_router import OutputRouter
from ..services.progress import TqdmProgressSink
from ..services.sql_engine import SqlExecutionEngine
from ..services.summary import render_query_summary_line, render_summary_line
from ..services.worker import JobWorker

"""CLI entrypoint.

    xlport [--config PATH] [--debug] import NAME
    xlport [--config PATH] [--debug] query NAME [--test N]
    xlport [--debug] inspect PATH [--sheet S] [--header-row N]
    xlport [--config PATH] [--debug] tables CONNECTION [--search TEXT]
    xlport [--config PATH] [--debug] ping CONNECTION

Exit codes: 0 success, 2 partial failure (failed rows > 0), 1 fatal.
A ``SUMMARY ...`` line is logged at the end of import / query.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

MAX_LOGGED_WARNINGS = 20
INSPECT_PREVIEW_ROWS = 5


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; override=True で .env の値を既存環境変数より優先する。"""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="xlport", description="Spreadsheet / SQL batch import and export")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Run a configured import")
    imp.add_argument("name")

    q = sub.add_parser("query", help="Run a configured query")
    q.add_argument("name")
    q.add_argument("--test", type=int, metavar="N", default=None, help="Return at most N rows")

    ins = sub.add_parser("inspect", help="Show header row, columns and generated mappings")
    ins.add_argument("path", type=Path)
    ins.add_argument("--sheet", default=None)
    ins.add_argument("--header-row", type=int, default=None)

    tbl = sub.add_parser("tables", help="List (or search) table names on a configured connection")
    tbl.add_argument("connection")
    tbl.add_argument("--search", default=None, metavar="TEXT", help="Case-insensitive substring filter")

    ping = sub.add_parser("ping", help="Test a configured connection")
    ping.add_argument("connection")
    return p.parse_args(argv)


def _exit_code(result: ImportResult) -> int:
    if not result.is_success:
        return EXIT_FATAL
    if result.failed_rows > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def _log_result(result: ImportResult) -> None:
    logger = get_logger()
    for w in result.warnings[:MAX_LOGGED_WARNINGS]:
        logger.warning(w)
    if len(result.warnings) > MAX_LOGGED_WARNINGS:
        logger.warning(f"... {len(result.warnings) - MAX_LOGGED_WARNINGS} more warnings")
    if not result.is_success:
        logger.error(f"{result.error_kind.value}: {result.error_message}")  # type: ignore[union-attr]


def _flush_error_log(error_log: ErrorLogBuffer) -> None:
    path = error_log.flush()
    if path is not None:
        get_logger().info(f"error log: {path}")


def _run_import(cfg: AppConfig, imp: ImportConfig, catalog: DialectCatalog) -> int:
    logger = get_logger()
    handle = catalog.resolve(cfg.connection(imp.connection))
    source = SourceDescriptor.from_path(imp.source, sheet_name=imp.sheet, header_row=imp.header_row)
    mappings = imp.mappings
    if mappings is None:
        try:
            mappings = tuple(generate_mappings(SchemaReader(source).read_columns()))
        except EngineError as e:
            logger.error(f"{imp.name}: {e}")
            return EXIT_FATAL
    job = ImportJob(
        source=source,
        mappings=mappings,
        target=handle,
        target_table=imp.table,
        clear_before_import=imp.clear_before_import,
        skip_empty_rows=imp.skip_empty_rows,
        split_each_row=imp.split_each_row,
        batch_size=imp.batch_size,
        max_rows=imp.max_rows,
        timeout_seconds=imp.timeout_seconds or cfg.defaults.timeout_seconds,
    )
    logger.info(f"import {imp.name}: {source.display_name} -> {imp.table} ({handle.name})")

    error_log = ErrorLogBuffer()
    engine = BatchImportEngine(batch_size=cfg.defaults.batch_size, error_log=error_log)
    with TqdmProgressSink(f"import {imp.name}") as sink:
        result = JobWorker(f"import-{imp.name}").submit(engine.run, job, sink).result()
    _flush_error_log(error_log)
    _log_result(result)
    log_summary(render_summary_line(imp.name, result)[len("SUMMARY "):])
    return _exit_code(result)


def _print_preview(result: QuerySuccess, max_rows: int) -> None:
    if not result.columns:
        print(f"affected_rows={result.affected_rows}")
        return
    frame = pd.DataFrame(list(result.rows[:max_rows]), columns=[c.name for c in result.columns])
    print(frame.to_string(index=False))
    if result.row_count > max_rows:
        print(f"... {result.row_count - max_rows} more rows")


def _run_query(cfg: AppConfig, q: QueryConfig, catalog: DialectCatalog, test_rows: int | None) -> int:
    logger = get_logger()
    handle = catalog.resolve(cfg.connection(q.connection))
    job = QueryJob(
        sql_text=q.sql,
        source=handle,
        parameters=dict(q.parameters),
        timeout_seconds=q.timeout_seconds or cfg.defaults.timeout_seconds,
    )
    engine = SqlExecutionEngine()
    worker = JobWorker(f"query-{q.name}")
    if test_rows is not None:
        result = worker.submit(engine.test, job, test_rows).result()
    else:
        result = worker.submit(engine.execute, job).result()

    if isinstance(result, QueryFailure) or q.output is None:
        if isinstance(result, QueryFailure):
            logger.error(f"{q.name}: {result.error_kind.value} ({result.dialect}) {result.error_message}")
        else:
            _print_preview(result, cfg.defaults.preview_rows)
        log_summary(render_query_summary_line(q.name, result)[len("SUMMARY "):])
        return EXIT_SUCCESS_ALL if result.is_success else EXIT_FATAL

    out_handle = catalog.resolve(cfg.connection(q.output_connection)) if q.output_connection else handle
    try:
        target = parse_output_target(q.output, dialect=out_handle, clear=q.clear_before_write)
    except ValueError as e:
        logger.error(f"{q.name}: {e}")
        return EXIT_FATAL
    error_log = ErrorLogBuffer()
    router = OutputRouter(BatchImportEngine(batch_size=cfg.defaults.batch_size, error_log=error_log))
    with TqdmProgressSink(f"output {q.name}") as sink:
        routed = JobWorker(f"output-{q.name}").submit(router.route, result, target, sink).result()
    _flush_error_log(error_log)
    _log_result(routed)
    log_summary(render_summary_line(q.name, routed)[len("SUMMARY "):])
    return _exit_code(routed)


def _run_tables(cfg: AppConfig, name: str, keyword: str | None, catalog: DialectCatalog) -> int:
    logger = get_logger()
    handle = catalog.resolve(cfg.connection(name))
    try:
        with handle.connect(cfg.defaults.timeout_seconds) as conn:
            names = search_tables(conn, handle, keyword) if keyword else list_tables(conn, handle)
    except EngineError as e:
        logger.error(f"tables {name}: {e}")
        return EXIT_FATAL
    for table in names:
        print(table)
    logger.info(f"{len(names)} tables on {name} ({handle.name})")
    return EXIT_SUCCESS_ALL


def _run_ping(cfg: AppConfig, name: str, catalog: DialectCatalog) -> int:
    logger = get_logger()
    check = catalog.resolve(cfg.connection(name)).test_connection()
    if not check.ok:
        logger.error(f"ping {name}: {check.error_kind.value} ({check.dialect}) {check.message}")  # type: ignore[union-attr]
        return EXIT_FATAL
    print(f"{name}: {check.dialect} ok ({check.duration_ms} ms)")
    return EXIT_SUCCESS_ALL


def _inspect(path: Path, sheet: str | None, header_row: int | None) -> int:
    logger = get_logger()
    source = SourceDescriptor.from_path(path, sheet_name=sheet, header_row=header_row)
    reader = SchemaReader(source)
    try:
        row = reader.resolve_header_row()
        columns = reader.read_columns(row)
        preview = reader.preview(INSPECT_PREVIEW_ROWS, row)
    except EngineError as e:
        logger.error(f"inspect: {e}")
        return EXIT_FATAL
    print(f"SOURCE: {source.display_name} sheet={reader.sheet_name or '-'} header_row={row}")
    print(f"  data_rows={reader.data_row_count(row)} merges={len(reader.merges)}")
    for m in generate_mappings(columns):
        print(f"  {m.source_column_letter}: {m.source_column_name} -> {m.target_field_name} {m.target_field_type}")
    if preview:
        frame = pd.DataFrame([list(r) for r in preview], columns=columns[: len(preview[0])])
        print(frame.to_string(index=False))
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None のときのみシステム引数を読む (テストで main([]) を呼ぶケース)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    # .env を最優先で読み込む (接続文字列の ${VAR} 展開より前)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    if args.command == "inspect":
        return _inspect(args.path, args.sheet, args.header_row)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    catalog = DialectCatalog()
    try:
        if args.command == "tables":
            return _run_tables(cfg, args.connection, args.search, catalog)
        if args.command == "ping":
            return _run_ping(cfg, args.connection, catalog)
        if args.command == "import":
            imp = cfg.imports.get(args.name)
            if imp is None:
                logger.error(f"unknown import: {args.name}")
                return EXIT_FATAL
            return _run_import(cfg, imp, catalog)
        q = cfg.queries.get(args.name)
        if q is None:
            logger.error(f"unknown query: {args.name}")
            return EXIT_FATAL
        return _run_query(cfg, q, catalog, args.test)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
