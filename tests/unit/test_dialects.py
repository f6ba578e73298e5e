from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from xlport.db.dialects import (
    MySqlDialect,
    OracleDialect,
    PostgreSqlDialect,
    SqliteDialect,
    SqlServerDialect,
    parse_neutral_type,
)


@pytest.mark.parametrize(
    "dialect,expected",
    [
        (SqliteDialect(), '"my ""t"'),
        (MySqlDialect(), "`my \"t`"),
        (SqlServerDialect(), '[my "t]'),
        (PostgreSqlDialect(), '"my ""t"'),
        (OracleDialect(), '"my ""t"'),
    ],
)
def test_quote_identifier(dialect, expected):
    assert dialect.quote_identifier('my "t') == expected


def test_quote_identifier_escapes_closing_bracket():
    assert SqlServerDialect().quote_identifier("a]b") == "[a]]b]"
    assert MySqlDialect().quote_identifier("a`b") == "`a``b`"


@pytest.mark.parametrize(
    "neutral,sqlite,mysql,mssql,pg,oracle",
    [
        ("VARCHAR(50)", "TEXT", "VARCHAR(50)", "NVARCHAR(50)", "VARCHAR(50)", "VARCHAR2(50)"),
        ("INT", "INTEGER", "INT", "INT", "INTEGER", "NUMBER(10)"),
        ("DECIMAL(10,2)", "REAL", "DECIMAL(10,2)", "DECIMAL(10,2)", "NUMERIC(10,2)", "NUMBER(10,2)"),
        ("DATE", "TEXT", "DATE", "DATE", "DATE", "DATE"),
        ("DATETIME", "TEXT", "DATETIME", "DATETIME2", "TIMESTAMP", "TIMESTAMP"),
        ("TEXT", "TEXT", "TEXT", "NVARCHAR(MAX)", "TEXT", "CLOB"),
        ("BOOLEAN", "INTEGER", "TINYINT(1)", "BIT", "BOOLEAN", "NUMBER(1)"),
    ],
)
def test_map_type(neutral, sqlite, mysql, mssql, pg, oracle):
    assert SqliteDialect().map_type(neutral) == sqlite
    assert MySqlDialect().map_type(neutral) == mysql
    assert SqlServerDialect().map_type(neutral) == mssql
    assert PostgreSqlDialect().map_type(neutral) == pg
    assert OracleDialect().map_type(neutral) == oracle


def test_parse_neutral_type():
    assert parse_neutral_type("decimal(15, 2)") == ("DECIMAL", (15, 2))
    assert parse_neutral_type("varchar(200)") == ("VARCHAR", (200,))
    assert parse_neutral_type("integer") == ("INT", ())
    assert parse_neutral_type("something odd") == ("TEXT", ())


def test_placeholders():
    assert SqliteDialect().positional_placeholder(3) == "?"
    assert PostgreSqlDialect().positional_placeholder(3) == "%s"
    assert OracleDialect().positional_placeholder(3) == ":3"
    assert SqliteDialect().named_placeholder("d") == ":d"
    assert MySqlDialect().named_placeholder("d") == "%(d)s"
    assert OracleDialect().named_placeholder("d") == ":d"


def test_bind_named_rewrites_known_markers_only():
    sql = "SELECT * FROM t WHERE d >= @from AND note = 'a@b.com' AND x = @@ROWCOUNT AND y = @other"
    bound, used = SqliteDialect().bind_named(sql, ["from"])
    assert bound == "SELECT * FROM t WHERE d >= :from AND note = 'a@b.com' AND x = @@ROWCOUNT AND y = @other"
    assert used == ["from"]


def test_bind_named_escapes_percent_for_pyformat():
    bound, used = PostgreSqlDialect().bind_named("SELECT * FROM t WHERE n LIKE 'A%' AND id = @id", ["id"])
    assert bound == "SELECT * FROM t WHERE n LIKE 'A%%' AND id = %(id)s"
    assert used == ["id"]


def test_bind_named_without_markers_leaves_sql_untouched():
    sql = "SELECT * FROM t WHERE n LIKE 'A%'"
    assert PostgreSqlDialect().bind_named(sql, ["unused"]) == (sql, [])


def test_create_table_sqlite():
    ddl = SqliteDialect().create_table_if_not_exists("sales", {"customer_id": "VARCHAR(50)", "qty": "INT"})
    assert ddl == 'CREATE TABLE IF NOT EXISTS "sales" ("customer_id" TEXT, "qty" INTEGER)'


def test_create_table_sqlserver_guards_with_object_id():
    ddl = SqlServerDialect().create_table_if_not_exists("o'brien", {"id": "VARCHAR(50)"})
    assert ddl.startswith("IF OBJECT_ID(N'o''brien', N'U') IS NULL CREATE TABLE [o'brien]")
    assert "[id] NVARCHAR(50)" in ddl


def test_create_table_oracle_ignores_existing_object():
    ddl = OracleDialect().create_table_if_not_exists("sales", {"note": "TEXT"})
    assert "EXECUTE IMMEDIATE 'CREATE TABLE \"sales\" (\"note\" CLOB)'" in ddl
    assert "SQLCODE != -955" in ddl


def test_clear_table():
    assert SqliteDialect().clear_table("t") == 'DELETE FROM "t"'
    assert MySqlDialect().clear_table("t") == "TRUNCATE TABLE `t`"
    assert SqlServerDialect().clear_table("t") == "TRUNCATE TABLE [t]"


def test_build_batch_insert_multi_row():
    sql = SqliteDialect().build_batch_insert("t", ["a", "b"], 2)
    assert sql == 'INSERT INTO "t" ("a", "b") VALUES (?, ?), (?, ?)'
    assert PostgreSqlDialect().build_batch_insert("t", ["a"], 2) == 'INSERT INTO "t" ("a") VALUES (%s), (%s)'


def test_build_batch_insert_oracle_insert_all():
    sql = OracleDialect().build_batch_insert("t", ["a", "b"], 2)
    assert sql.splitlines() == [
        "INSERT ALL",
        '  INTO "t" ("a", "b") VALUES (:1, :2)',
        '  INTO "t" ("a", "b") VALUES (:3, :4)',
        "SELECT 1 FROM DUAL",
    ]


def test_rows_per_statement_respects_parameter_limits():
    assert SqlServerDialect().rows_per_statement(1) == 1000
    assert SqlServerDialect().rows_per_statement(10) == 209
    assert SqliteDialect().rows_per_statement(10) == 99
    assert SqliteDialect().rows_per_statement(2000) == 1


def test_row_cap_limit_shapes():
    assert SqliteDialect().apply_row_cap("SELECT * FROM t;", 5) == "SELECT * FROM t\nLIMIT 5"
    assert PostgreSqlDialect().apply_row_cap("with x as (select 1) select * from x", 5).endswith("LIMIT 5")
    # already limited / not a query: client-side only
    assert MySqlDialect().apply_row_cap("SELECT * FROM t LIMIT 10", 5) is None
    assert SqliteDialect().apply_row_cap("UPDATE t SET a = 1", 5) is None


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT x FROM s LIMIT 10 -- top ten",
        "SELECT x FROM s LIMIT :n",
        "SELECT x FROM s /* newest */ ORDER BY x",
        "SELECT x FROM s ORDER BY x OFFSET 5 ROWS FETCH NEXT 5 ROWS ONLY",
    ],
)
def test_row_cap_left_to_client_when_statement_limits_itself(sql):
    assert SqliteDialect().apply_row_cap(sql, 3) is None
    assert PostgreSqlDialect().apply_row_cap(sql, 3) is None


def test_row_cap_sqlserver_top():
    assert SqlServerDialect().apply_row_cap("SELECT a FROM t", 5) == "SELECT TOP (5) a FROM t"
    assert SqlServerDialect().apply_row_cap("select distinct a from t", 5) == "select distinct TOP (5) a from t"
    assert SqlServerDialect().apply_row_cap("SELECT TOP 3 a FROM t", 5) is None
    assert SqlServerDialect().apply_row_cap("WITH x AS (SELECT 1 a) SELECT a FROM x", 5) is None


def test_row_cap_oracle_rownum():
    assert OracleDialect().apply_row_cap("SELECT * FROM t", 5) == "SELECT * FROM (\nSELECT * FROM t\n) WHERE ROWNUM <= 5"


def test_sqlite_adapt_value():
    d = SqliteDialect()
    assert d.adapt_value(Decimal("1.50")) == 1.5
    assert d.adapt_value(date(2024, 1, 2)) == "2024-01-02"
    assert d.adapt_value(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"
    assert d.adapt_value(True) == 1
    assert PostgreSqlDialect().adapt_value(Decimal("1.5")) == Decimal("1.5")


@pytest.mark.parametrize(
    "dialect,fragment",
    [
        (SqliteDialect(), "FROM sqlite_master"),
        (MySqlDialect(), "table_schema = DATABASE()"),
        (SqlServerDialect(), "FROM INFORMATION_SCHEMA.TABLES"),
        (PostgreSqlDialect(), "table_schema = current_schema()"),
        (OracleDialect(), "FROM user_tables"),
    ],
)
def test_list_tables_sql(dialect, fragment):
    sql = dialect.list_tables_sql()
    assert fragment in sql
    assert sql.upper().startswith("SELECT ")
    assert "ORDER BY" in sql


def test_ping_sql():
    assert SqliteDialect().ping_sql == "SELECT 1"
    assert OracleDialect().ping_sql == "SELECT 1 FROM DUAL"
