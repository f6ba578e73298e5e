from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

"""SQL dialects: identifier quoting, placeholders, DDL, batch INSERT shape, row caps.

One concrete class per supported backend. Dialects are stateless and hold no
connection; DialectCatalog pairs each with a ConnectionFactory. Adding a
backend means adding a class here plus a factory in connections.py.

Neutral types (emitted by the field mapping generator and the query column
typer): VARCHAR(n), INT, BIGINT, FLOAT, DECIMAL(p,s), DATE, DATETIME, BOOLEAN,
TEXT, BLOB.
"""

__all__ = [
    "DialectId",
    "SqlDialect",
    "SqliteDialect",
    "MySqlDialect",
    "SqlServerDialect",
    "PostgreSqlDialect",
    "OracleDialect",
    "parse_neutral_type",
    "DIALECTS",
]


class DialectId(Enum):
    SQLITE = "SQLite"
    MYSQL = "MySQL"
    SQLSERVER = "SqlServer"
    POSTGRESQL = "PostgreSQL"
    ORACLE = "Oracle"


_VARCHAR_RE = re.compile(r"^N?VARCHAR2?\s*\(\s*(\d+)\s*\)$")
_DECIMAL_RE = re.compile(r"^(?:DECIMAL|NUMERIC)\s*\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)$")
_NAMED_MARKER_RE = re.compile(r"(?<![@\w])@([A-Za-z_]\w*)")
_SELECT_OR_WITH_RE = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)
# 既に行数を絞る句 / コメントがある文には LIMIT を付け足さない
_UNSAFE_TAIL_RE = re.compile(r"\b(limit|offset|fetch|for\s+update)\b|--|/\*", re.IGNORECASE)
_SELECT_HEAD_RE = re.compile(r"^(\s*select)(\s+distinct\b)?\s+", re.IGNORECASE)
_TOP_RE = re.compile(r"^top\b", re.IGNORECASE)

_ALIASES = {
    "INTEGER": "INT",
    "SMALLINT": "INT",
    "DOUBLE": "FLOAT",
    "REAL": "FLOAT",
    "TIMESTAMP": "DATETIME",
    "BOOL": "BOOLEAN",
    "STRING": "TEXT",
}


def parse_neutral_type(neutral: str) -> tuple[str, tuple[int, ...]]:
    """Split a neutral type into (base, args): 'DECIMAL(10,2)' -> ('DECIMAL', (10, 2))."""
    text = (neutral or "").strip().upper()
    m = _VARCHAR_RE.match(text)
    if m:
        return "VARCHAR", (int(m.group(1)),)
    m = _DECIMAL_RE.match(text)
    if m:
        scale = int(m.group(2)) if m.group(2) is not None else 0
        return "DECIMAL", (int(m.group(1)), scale)
    base = _ALIASES.get(text, text)
    if base in {"INT", "BIGINT", "FLOAT", "DATE", "DATETIME", "BOOLEAN", "TEXT", "BLOB"}:
        return base, ()
    return "TEXT", ()


def _strip_statement(sql: str) -> str:
    return sql.strip().rstrip(";").rstrip()


class SqlDialect(ABC):
    """Dialect-specific SQL fragments."""

    dialect_id: DialectId
    quote_open = '"'
    quote_close = '"'
    paramstyle = "qmark"  # qmark | pyformat | numeric
    max_parameters = 999
    max_rows_per_statement = 1000
    ping_sql = "SELECT 1"

    @property
    def name(self) -> str:
        return self.dialect_id.value

    # ------------------------------------------------------------ identifiers
    def quote_identifier(self, identifier: str) -> str:
        escaped = identifier.replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    # ----------------------------------------------------------- placeholders
    def positional_placeholder(self, position: int) -> str:
        """Placeholder for the 1-based position-th bound value."""
        if self.paramstyle == "pyformat":
            return "%s"
        if self.paramstyle == "numeric":
            return f":{position}"
        return "?"

    def named_placeholder(self, name: str) -> str:
        if self.paramstyle == "pyformat":
            return f"%({name})s"
        return f":{name}"

    def bind_named(self, sql: str, names: Iterable[str]) -> tuple[str, list[str]]:
        """Rewrite ``@name`` markers into the driver's named style.

        Only names present in ``names`` are rewritten (``@@ROWCOUNT`` and
        e-mail literals are left alone). Returns the SQL and the names that
        were actually used, in first-seen order.
        """
        wanted = set(names)
        used: list[str] = []
        text = sql
        if self.paramstyle == "pyformat":
            # pyformat ドライバは引数ありの場合 % をフォーマット指定子として解釈する
            text = text.replace("%", "%%")

        def _sub(m: re.Match[str]) -> str:
            name = m.group(1)
            if name not in wanted:
                return m.group(0)
            if name not in used:
                used.append(name)
            return self.named_placeholder(name)

        bound = _NAMED_MARKER_RE.sub(_sub, text)
        if not used:
            return sql, used
        return bound, used

    # ------------------------------------------------------------------ types
    @abstractmethod
    def map_type(self, neutral: str) -> str:
        ...

    def column_definitions(self, columns: Mapping[str, str]) -> str:
        return ", ".join(f"{self.quote_identifier(n)} {self.map_type(t)}" for n, t in columns.items())

    # -------------------------------------------------------------------- DDL
    def create_table_if_not_exists(self, table: str, columns: Mapping[str, str]) -> str:
        return f"CREATE TABLE IF NOT EXISTS {self.quote_identifier(table)} ({self.column_definitions(columns)})"

    @abstractmethod
    def table_exists_sql(self, table: str) -> tuple[str, tuple[Any, ...]]:
        ...

    @abstractmethod
    def list_tables_sql(self) -> str:
        """One-column SELECT of the user table names, ordered by name."""

    def clear_table(self, table: str) -> str:
        return f"TRUNCATE TABLE {self.quote_identifier(table)}"

    # ------------------------------------------------------------------ DML
    def build_batch_insert(self, table: str, columns: Sequence[str], row_count: int) -> str:
        """Single multi-row INSERT for row_count rows, positional placeholders."""
        cols_sql = ", ".join(self.quote_identifier(c) for c in columns)
        width = len(columns)
        groups = []
        for r in range(row_count):
            base = r * width
            groups.append("(" + ", ".join(self.positional_placeholder(base + i + 1) for i in range(width)) + ")")
        return f"INSERT INTO {self.quote_identifier(table)} ({cols_sql}) VALUES {', '.join(groups)}"

    def rows_per_statement(self, column_count: int) -> int:
        if column_count <= 0:
            return self.max_rows_per_statement
        return max(1, min(self.max_rows_per_statement, self.max_parameters // column_count))

    def apply_row_cap(self, sql: str, max_rows: int) -> str | None:
        """Inject a native LIMIT; None when the statement shape has no safe cap."""
        text = _strip_statement(sql)
        if not _SELECT_OR_WITH_RE.match(text) or _UNSAFE_TAIL_RE.search(text):
            return None
        return f"{text}\nLIMIT {int(max_rows)}"

    def adapt_value(self, value: Any) -> Any:
        return value


class SqliteDialect(SqlDialect):
    dialect_id = DialectId.SQLITE
    paramstyle = "qmark"
    max_parameters = 999  # SQLITE_MAX_VARIABLE_NUMBER (旧既定値) に合わせる
    max_rows_per_statement = 500

    def map_type(self, neutral: str) -> str:
        base, _ = parse_neutral_type(neutral)
        return {
            "INT": "INTEGER",
            "BIGINT": "INTEGER",
            "BOOLEAN": "INTEGER",
            "FLOAT": "REAL",
            "DECIMAL": "REAL",
            "BLOB": "BLOB",
        }.get(base, "TEXT")

    def table_exists_sql(self, table: str) -> tuple[str, tuple[Any, ...]]:
        return "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)

    def list_tables_sql(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"

    def clear_table(self, table: str) -> str:
        return f"DELETE FROM {self.quote_identifier(table)}"

    def adapt_value(self, value: Any) -> Any:
        # sqlite3 は Decimal / date をそのまま bind できない
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, Decimal):
            return float(value)
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        if isinstance(value, (date, time)):
            return value.isoformat()
        return value


class MySqlDialect(SqlDialect):
    dialect_id = DialectId.MYSQL
    quote_open = "`"
    quote_close = "`"
    paramstyle = "pyformat"
    max_parameters = 65535

    def map_type(self, neutral: str) -> str:
        base, args = parse_neutral_type(neutral)
        if base == "VARCHAR":
            return f"VARCHAR({args[0]})"
        if base == "DECIMAL":
            return f"DECIMAL({args[0]},{args[1]})"
        return {
            "INT": "INT",
            "BIGINT": "BIGINT",
            "FLOAT": "DOUBLE",
            "DATE": "DATE",
            "DATETIME": "DATETIME",
            "BOOLEAN": "TINYINT(1)",
            "BLOB": "LONGBLOB",
        }.get(base, "TEXT")

    def table_exists_sql(self, table: str) -> tuple[str, tuple[Any, ...]]:
        return (
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = DATABASE() AND table_name = %s",
            (table,),
        )

    def list_tables_sql(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_type = 'BASE TABLE' ORDER BY table_name"
        )


class SqlServerDialect(SqlDialect):
    dialect_id = DialectId.SQLSERVER
    quote_open = "["
    quote_close = "]"
    paramstyle = "pyformat"
    max_parameters = 2100 - 1  # 1 リクエスト 2100 パラメータ上限
    max_rows_per_statement = 1000  # VALUES 句の行数上限

    def map_type(self, neutral: str) -> str:
        base, args = parse_neutral_type(neutral)
        if base == "VARCHAR":
            return f"NVARCHAR({args[0]})"
        if base == "DECIMAL":
            return f"DECIMAL({args[0]},{args[1]})"
        return {
            "INT": "INT",
            "BIGINT": "BIGINT",
            "FLOAT": "FLOAT",
            "DATE": "DATE",
            "DATETIME": "DATETIME2",
            "BOOLEAN": "BIT",
            "BLOB": "VARBINARY(MAX)",
        }.get(base, "NVARCHAR(MAX)")

    def create_table_if_not_exists(self, table: str, columns: Mapping[str, str]) -> str:
        literal = table.replace("'", "''")
        return (
            f"IF OBJECT_ID(N'{literal}', N'U') IS NULL "
            f"CREATE TABLE {self.quote_identifier(table)} ({self.column_definitions(columns)})"
        )

    def table_exists_sql(self, table: str) -> tuple[str, tuple[Any, ...]]:
        return "SELECT COUNT(*) FROM INFORMATION_SCHEMA.TABLES WHERE TABLE_NAME = %s", (table,)

    def list_tables_sql(self) -> str:
        return "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES WHERE TABLE_TYPE = 'BASE TABLE' ORDER BY TABLE_NAME"

    def apply_row_cap(self, sql: str, max_rows: int) -> str | None:
        text = _strip_statement(sql)
        m = _SELECT_HEAD_RE.match(text)
        if m is None:
            return None
        rest = text[m.end():]
        if _TOP_RE.match(rest):
            return None
        return f"{m.group(1)}{m.group(2) or ''} TOP ({int(max_rows)}) {rest}"


class PostgreSqlDialect(SqlDialect):
    dialect_id = DialectId.POSTGRESQL
    paramstyle = "pyformat"
    max_parameters = 65535

    def map_type(self, neutral: str) -> str:
        base, args = parse_neutral_type(neutral)
        if base == "VARCHAR":
            return f"VARCHAR({args[0]})"
        if base == "DECIMAL":
            return f"NUMERIC({args[0]},{args[1]})"
        return {
            "INT": "INTEGER",
            "BIGINT": "BIGINT",
            "FLOAT": "DOUBLE PRECISION",
            "DATE": "DATE",
            "DATETIME": "TIMESTAMP",
            "BOOLEAN": "BOOLEAN",
            "BLOB": "BYTEA",
        }.get(base, "TEXT")

    def table_exists_sql(self, table: str) -> tuple[str, tuple[Any, ...]]:
        return (
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = current_schema() AND table_name = %s",
            (table,),
        )

    def list_tables_sql(self) -> str:
        return (
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_type = 'BASE TABLE' ORDER BY table_name"
        )


class OracleDialect(SqlDialect):
    dialect_id = DialectId.ORACLE
    paramstyle = "numeric"
    max_parameters = 65535
    max_rows_per_statement = 500
    ping_sql = "SELECT 1 FROM DUAL"

    def map_type(self, neutral: str) -> str:
        base, args = parse_neutral_type(neutral)
        if base == "VARCHAR":
            return f"VARCHAR2({args[0]})"
        if base == "DECIMAL":
            return f"NUMBER({args[0]},{args[1]})"
        return {
            "INT": "NUMBER(10)",
            "BIGINT": "NUMBER(19)",
            "FLOAT": "BINARY_DOUBLE",
            "DATE": "DATE",
            "DATETIME": "TIMESTAMP",
            "BOOLEAN": "NUMBER(1)",
            "BLOB": "BLOB",
        }.get(base, "CLOB")

    def create_table_if_not_exists(self, table: str, columns: Mapping[str, str]) -> str:
        ddl = f"CREATE TABLE {self.quote_identifier(table)} ({self.column_definitions(columns)})"
        ddl = ddl.replace("'", "''")
        # ORA-00955: name is already used by an existing object
        return (
            "BEGIN\n"
            f"  EXECUTE IMMEDIATE '{ddl}';\n"
            "EXCEPTION\n"
            "  WHEN OTHERS THEN\n"
            "    IF SQLCODE != -955 THEN RAISE; END IF;\n"
            "END;"
        )

    def table_exists_sql(self, table: str) -> tuple[str, tuple[Any, ...]]:
        return "SELECT COUNT(*) FROM user_tables WHERE table_name = :1", (table,)

    def list_tables_sql(self) -> str:
        return "SELECT table_name FROM user_tables ORDER BY table_name"

    def build_batch_insert(self, table: str, columns: Sequence[str], row_count: int) -> str:
        # 複数行 VALUES 非対応のため INSERT ALL を使用
        cols_sql = ", ".join(self.quote_identifier(c) for c in columns)
        width = len(columns)
        target = f"INTO {self.quote_identifier(table)} ({cols_sql})"
        parts = ["INSERT ALL"]
        for r in range(row_count):
            base = r * width
            values = ", ".join(self.positional_placeholder(base + i + 1) for i in range(width))
            parts.append(f"  {target} VALUES ({values})")
        parts.append("SELECT 1 FROM DUAL")
        return "\n".join(parts)

    def apply_row_cap(self, sql: str, max_rows: int) -> str | None:
        text = _strip_statement(sql)
        if not _SELECT_OR_WITH_RE.match(text):
            return None
        return f"SELECT * FROM (\n{text}\n) WHERE ROWNUM <= {int(max_rows)}"

    def adapt_value(self, value: Any) -> Any:
        if isinstance(value, bool):
            return int(value)
        return value


DIALECTS: dict[DialectId, type[SqlDialect]] = {
    DialectId.SQLITE: SqliteDialect,
    DialectId.MYSQL: MySqlDialect,
    DialectId.SQLSERVER: SqlServerDialect,
    DialectId.POSTGRESQL: PostgreSqlDialect,
    DialectId.ORACLE: OracleDialect,
}
