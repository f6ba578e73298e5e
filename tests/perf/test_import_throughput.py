from __future__ import annotations

import math
import time

import numpy as np
import pytest

from xlport.db.batch_insert import batch_insert
from xlport.db.dialects import OracleDialect, SqliteDialect, SqlServerDialect
from xlport.excel.reader import SchemaReader
from xlport.models.jobs import ImportJob
from xlport.models.source import SourceDescriptor
from xlport.services.field_mapping import generate_mappings
from xlport.services.import_engine import BatchImportEngine

"""Performance smoke tests.

Kept small so CI stays fast; the thresholds are lenient floors that only
catch pathological regressions (per-row statements, quadratic chunking).
"""


class CountingCursor:
    def __init__(self) -> None:
        self.statements = 0
        self.params = 0

    def execute(self, sql, params=None):
        self.statements += 1
        self.params += len(params or ())


@pytest.mark.parametrize(
    "dialect,cols",
    [(SqliteDialect(), 40), (SqlServerDialect(), 5), (OracleDialect(), 5)],
)
def test_batch_insert_statement_count(dialect, cols):
    rows = np.arange(50_000 * cols).reshape(50_000, cols).tolist()
    cur = CountingCursor()
    start = time.perf_counter()
    res = batch_insert(cur, dialect, "t", [f"c{i}" for i in range(cols)], rows)
    elapsed = time.perf_counter() - start
    assert res.inserted_rows == 50_000
    assert cur.statements == res.statements
    # 1 文あたりの上限行数で割り切った本数だけ発行される
    assert cur.statements == math.ceil(50_000 / dialect.rows_per_statement(cols))
    assert cur.params == 50_000 * cols
    assert elapsed < 30, f"batch_insert too slow: {elapsed:.3f}s"


def test_sqlite_import_throughput_floor(make_workbook, sqlite_handle):
    rng = np.random.default_rng(42)
    n = 5_000
    rows = [["Performance Test Data"], ["客户编号", "客户名称", "数量", "价格", "销售日期"]]
    rows += [
        [f"C{i:06d}", f"Customer_{i}", int(rng.integers(1, 1000)), float(round(rng.uniform(1, 999), 2)), "2024-05-01"]
        for i in range(n)
    ]
    path = make_workbook("perf.xlsx", rows)
    source = SourceDescriptor.from_path(path, header_row=None)
    mappings = tuple(generate_mappings(SchemaReader(source).read_columns()))

    start = time.perf_counter()
    result = BatchImportEngine(batch_size=1000).run(
        ImportJob(source=source, mappings=mappings, target=sqlite_handle, target_table="perf")
    )
    elapsed = time.perf_counter() - start

    assert result.is_success
    assert result.success_rows == n
    throughput = n / elapsed
    assert throughput > 200, f"throughput {throughput:.0f} rows/s"
