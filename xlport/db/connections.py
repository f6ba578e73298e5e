from __future__ import annotations

import importlib
import logging
import re
import sqlite3
import time
from abc import ABC, abstractmethod
from typing import Any

from ..models.errors import EngineError, ErrorKind

"""Connection factories (one per dialect) over plain DB-API drivers.

Connection strings use the ``Key=Value;`` shape of the desktop tool:

    SQLite      Data Source=app.db            (or a bare path)
    MySQL       Server=h;Port=3306;Database=d;Uid=u;Pwd=p;
    SQL Server  Server=h,1433;Initial Catalog=d;User Id=u;Password=p;
    PostgreSQL  Host=h;Port=5432;Database=d;Username=u;Password=p;
    Oracle      Data Source=h:1521/svc;User Id=u;Password=p;

Drivers other than sqlite3 are imported on first connect so that a missing
optional driver only affects jobs that target that dialect.
"""

__all__ = [
    "parse_connection_string",
    "ConnectionFactory",
    "SqliteConnectionFactory",
    "MySqlConnectionFactory",
    "SqlServerConnectionFactory",
    "PostgreSqlConnectionFactory",
    "OracleConnectionFactory",
    "TIMEOUT_MARKERS",
    "looks_like_oracle_data_source",
]

logger = logging.getLogger(__name__)

# driver 例外メッセージでタイムアウトを判定するためのマーカー (小文字比較)
TIMEOUT_MARKERS = (
    "timed out",
    "timeout expired",
    "interrupted",
    "statement timeout",
    "canceling statement due to",
    "lost connection to mysql server during query",
    "ora-01013",
    "dpi-1067",
    "dpy-4011",
    "dpy-4024",
)


def parse_connection_string(connection_string: str) -> dict[str, str]:
    """``A=1;b = 2;`` -> {"a": "1", "b": "2"} (keys lowercased, values trimmed)."""
    params: dict[str, str] = {}
    for part in connection_string.split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip().lower()
        if key:
            params[key] = value.strip()
    return params


def _first(params: dict[str, str], *keys: str) -> str | None:
    for key in keys:
        value = params.get(key)
        if value:
            return value
    return None


class ConnectionFactory(ABC):
    """Opens DB-API connections for one dialect."""

    dialect_name: str = ""
    driver: str = ""

    def open(self, connection_string: str, timeout_seconds: int) -> Any:
        module = self._import_driver()
        params = parse_connection_string(connection_string)
        try:
            conn = self._connect(module, params, connection_string, timeout_seconds)
        except EngineError:
            raise
        except Exception as e:
            kind = ErrorKind.TIMEOUT if self.is_timeout(e) else ErrorKind.CONNECTION_FAILED
            raise EngineError(kind, f"cannot connect: {e}", dialect=self.dialect_name) from e
        logger.debug("connected dialect=%s timeout=%ss", self.dialect_name, timeout_seconds)
        return conn

    def is_timeout(self, exc: BaseException) -> bool:
        if isinstance(exc, TimeoutError):
            return True
        text = str(exc).lower()
        return any(marker in text for marker in TIMEOUT_MARKERS)

    def _import_driver(self) -> Any:
        try:
            return importlib.import_module(self.driver)
        except ImportError as e:
            raise EngineError(
                ErrorKind.CONNECTION_FAILED,
                f"driver '{self.driver}' is not installed",
                dialect=self.dialect_name,
            ) from e

    @abstractmethod
    def _connect(self, module: Any, params: dict[str, str], raw: str, timeout_seconds: int) -> Any:
        ...


class _DeadlineCursor(sqlite3.Cursor):
    def execute(self, sql: str, parameters: Any = (), /) -> sqlite3.Cursor:  # type: ignore[override]
        self.connection.arm_deadline()  # type: ignore[attr-defined]
        return super().execute(sql, parameters)

    def executemany(self, sql: str, seq_of_parameters: Any, /) -> sqlite3.Cursor:  # type: ignore[override]
        self.connection.arm_deadline()  # type: ignore[attr-defined]
        return super().executemany(sql, seq_of_parameters)


class _DeadlineConnection(sqlite3.Connection):
    """sqlite3 connection that aborts a statement running past its deadline.

    The progress handler returns non-zero once the deadline passes, which makes
    SQLite abort the statement with OperationalError('interrupted').
    """

    statement_timeout: float = 0.0
    _deadline: float | None = None

    def arm_deadline(self) -> None:
        self._deadline = time.monotonic() + self.statement_timeout if self.statement_timeout > 0 else None

    def check_deadline(self) -> int:
        if self._deadline is not None and time.monotonic() > self._deadline:
            return 1
        return 0

    def cursor(self, factory: Any = None) -> sqlite3.Cursor:  # type: ignore[override]
        return super().cursor(factory or _DeadlineCursor)


class SqliteConnectionFactory(ConnectionFactory):
    dialect_name = "SQLite"
    driver = "sqlite3"

    def _connect(self, module: Any, params: dict[str, str], raw: str, timeout_seconds: int) -> Any:
        path = _first(params, "data source", "datasource", "filename") or raw.strip().rstrip(";")
        if not path:
            raise EngineError(ErrorKind.CONNECTION_FAILED, "empty SQLite data source", dialect=self.dialect_name)
        conn = module.connect(
            path,
            timeout=timeout_seconds,
            factory=_DeadlineConnection,
            check_same_thread=False,
        )
        conn.statement_timeout = float(timeout_seconds)
        conn.set_progress_handler(conn.check_deadline, 1000)
        return conn

    def is_timeout(self, exc: BaseException) -> bool:
        # database is locked: busy timeout 経過
        return super().is_timeout(exc) or "database is locked" in str(exc).lower()


class MySqlConnectionFactory(ConnectionFactory):
    dialect_name = "MySQL"
    driver = "pymysql"

    def _connect(self, module: Any, params: dict[str, str], raw: str, timeout_seconds: int) -> Any:
        return module.connect(
            host=_first(params, "server", "host") or "localhost",
            port=int(_first(params, "port") or 3306),
            user=_first(params, "uid", "user id", "user"),
            password=_first(params, "pwd", "password") or "",
            database=_first(params, "database", "initial catalog"),
            charset=_first(params, "charset") or "utf8mb4",
            connect_timeout=timeout_seconds,
            read_timeout=timeout_seconds,
            write_timeout=timeout_seconds,
            autocommit=False,
        )


class SqlServerConnectionFactory(ConnectionFactory):
    dialect_name = "SqlServer"
    driver = "pymssql"

    def _connect(self, module: Any, params: dict[str, str], raw: str, timeout_seconds: int) -> Any:
        server = _first(params, "server", "data source", "address") or "localhost"
        port = _first(params, "port")
        if "," in server:
            # "host,1433" 形式
            server, port = (p.strip() for p in server.split(",", 1))
        kwargs: dict[str, Any] = {
            "server": server,
            "database": _first(params, "initial catalog", "database") or "",
            "timeout": timeout_seconds,
            "login_timeout": timeout_seconds,
            "charset": "UTF-8",
            "autocommit": False,
        }
        if port:
            kwargs["port"] = port
        trusted = (_first(params, "trusted_connection", "integrated security") or "").lower()
        if trusted not in {"true", "yes", "sspi"}:
            kwargs["user"] = _first(params, "user id", "uid", "user") or ""
            kwargs["password"] = _first(params, "password", "pwd") or ""
        return module.connect(**kwargs)


class PostgreSqlConnectionFactory(ConnectionFactory):
    dialect_name = "PostgreSQL"
    driver = "psycopg2"

    def _connect(self, module: Any, params: dict[str, str], raw: str, timeout_seconds: int) -> Any:
        conn = module.connect(
            host=_first(params, "host", "server") or "localhost",
            port=int(_first(params, "port") or 5432),
            dbname=_first(params, "database", "dbname") or "postgres",
            user=_first(params, "username", "user id", "user"),
            password=_first(params, "password", "pwd") or "",
            connect_timeout=timeout_seconds,
            options=f"-c statement_timeout={int(timeout_seconds) * 1000}",
        )
        conn.autocommit = False
        return conn


class OracleConnectionFactory(ConnectionFactory):
    dialect_name = "Oracle"
    driver = "oracledb"

    def _connect(self, module: Any, params: dict[str, str], raw: str, timeout_seconds: int) -> Any:
        conn = module.connect(
            user=_first(params, "user id", "uid", "user"),
            password=_first(params, "password", "pwd") or "",
            dsn=_first(params, "data source", "dsn"),
            tcp_connect_timeout=float(timeout_seconds),
        )
        # ミリ秒単位の round-trip 上限
        conn.call_timeout = int(timeout_seconds) * 1000
        return conn


_HOST_PORT_SERVICE_RE = re.compile(r"^[\w.\-]+:\d+/[\w.\-]+$")


def looks_like_oracle_data_source(value: str) -> bool:
    return bool(_HOST_PORT_SERVICE_RE.match(value.strip()))
