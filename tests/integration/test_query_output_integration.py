from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from xlport.excel.reader import SchemaReader
from xlport.models.jobs import QueryJob, parse_output_target
from xlport.models.source import SourceDescriptor
from xlport.services.output_router import OutputRouter
from xlport.services.sql_engine import SqlExecutionEngine


@pytest.fixture()
def orders_db(sqlite_path: Path) -> Path:
    conn = sqlite3.connect(sqlite_path)
    conn.executescript(
        """
        CREATE TABLE orders (order_id TEXT, customer TEXT, amount REAL, ordered_on TEXT);
        INSERT INTO orders VALUES ('O1', 'Alice', 12.5, '2024-01-03');
        INSERT INTO orders VALUES ('O2', 'Bob', 8.0, '2024-02-14');
        INSERT INTO orders VALUES ('O3', 'Alice', 30.0, '2024-03-01');
        """
    )
    conn.commit()
    conn.close()
    return sqlite_path


def test_query_to_table_on_other_connection(orders_db, catalog, temp_workdir):
    source = catalog.resolve(f"Data Source={orders_db}")
    target_db = temp_workdir / "warehouse.db"
    target = parse_output_target("alice_orders", dialect=catalog.resolve(f"Data Source={target_db}"), clear=True)

    result = SqlExecutionEngine().execute(
        QueryJob("SELECT order_id, amount FROM orders WHERE customer = @who ORDER BY order_id", source, {"who": "Alice"})
    )
    routed = OutputRouter().route(result, target)
    assert routed.is_success
    assert routed.success_rows == 2

    # 2 回目も clear により重複しない
    OutputRouter().route(result, target)
    conn = sqlite3.connect(target_db)
    try:
        assert conn.execute('SELECT * FROM "alice_orders" ORDER BY order_id').fetchall() == [("O1", 12.5), ("O3", 30.0)]
    finally:
        conn.close()


def test_query_to_worksheet_then_reimport(orders_db, catalog, temp_workdir):
    handle = catalog.resolve(f"Data Source={orders_db}")
    result = SqlExecutionEngine().execute(QueryJob("SELECT * FROM orders ORDER BY order_id", handle))
    target = parse_output_target(f"{temp_workdir / 'out' / 'orders.xlsx'}!Orders")
    routed = OutputRouter().route(result, target)
    assert routed.is_success
    assert routed.total_rows == 3

    reader = SchemaReader(SourceDescriptor.from_path(temp_workdir / "out" / "orders.xlsx", sheet_name="Orders"))
    assert reader.read_columns() == ["order_id", "customer", "amount", "ordered_on"]
    assert reader.data_row_count() == 3


def test_failed_query_does_not_create_outputs(orders_db, catalog, temp_workdir):
    handle = catalog.resolve(f"Data Source={orders_db}")
    result = SqlExecutionEngine().execute(QueryJob("SELECT nope FROM orders", handle))
    routed = OutputRouter().route(result, parse_output_target(f"{temp_workdir / 'x.xlsx'}!S"))
    assert not routed.is_success
    assert not (temp_workdir / "x.xlsx").exists()
