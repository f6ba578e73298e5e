from __future__ import annotations

import logging
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ..models.errors import EngineError, ErrorKind
from ..models.jobs import DEFAULT_TIMEOUT_SECONDS
from ..models.results import ConnectionCheck
from .connections import (
    ConnectionFactory,
    MySqlConnectionFactory,
    OracleConnectionFactory,
    PostgreSqlConnectionFactory,
    SqliteConnectionFactory,
    SqlServerConnectionFactory,
    looks_like_oracle_data_source,
    parse_connection_string,
)
from .dialects import DIALECTS, DialectId, SqlDialect

"""Dialect catalog: connection string -> DialectHandle.

Classification is a case-insensitive keyword match evaluated in a fixed
order (first match wins):

1. MySQL       server= and uid=
2. PostgreSQL  host= and username=
3. Oracle      data source= and user id= plus a hint (tns / oracle / host:port/service)
4. SQL Server  initial catalog= or trusted_connection=, or user id= with server= / data source=
5. SQLite      everything else

Unrecognised strings never fail: they fall back to SQLite with a WARN log
tagged UnknownDialect and ``handle.fallback`` set. If such a handle then
cannot connect, the failure is reported as UNKNOWN_DIALECT rather than
CONNECTION_FAILED.
"""

__all__ = [
    "UNKNOWN_DIALECT_WARNING",
    "DialectHandle",
    "DialectCatalog",
    "default_factories",
]

logger = logging.getLogger(__name__)

UNKNOWN_DIALECT_WARNING = "UNKNOWN_DIALECT: connection string not recognised; treated as SQLite"
CONNECTION_TEST_TIMEOUT_SECONDS = 15


def default_factories() -> dict[DialectId, ConnectionFactory]:
    return {
        DialectId.SQLITE: SqliteConnectionFactory(),
        DialectId.MYSQL: MySqlConnectionFactory(),
        DialectId.SQLSERVER: SqlServerConnectionFactory(),
        DialectId.POSTGRESQL: PostgreSqlConnectionFactory(),
        DialectId.ORACLE: OracleConnectionFactory(),
    }


@dataclass(frozen=True)
class DialectHandle:
    """Resolved dialect plus the means to open one connection to it."""
    dialect_id: DialectId
    connection_factory: ConnectionFactory
    sql_dialect: SqlDialect
    connection_string: str = field(repr=False)  # パスワードを含むため repr から除外
    fallback: bool = False

    @property
    def name(self) -> str:
        return self.dialect_id.value

    @contextmanager
    def connect(self, timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS) -> Iterator[Any]:
        """Open one connection; it is closed when the block exits, on every path."""
        try:
            conn = self.connection_factory.open(self.connection_string, timeout_seconds)
        except EngineError as e:
            if self.fallback and e.kind == ErrorKind.CONNECTION_FAILED:
                raise EngineError(
                    ErrorKind.UNKNOWN_DIALECT, f"{UNKNOWN_DIALECT_WARNING}: {e.message}", dialect=e.dialect
                ) from e
            raise
        try:
            yield conn
        finally:
            conn.close()
            logger.debug("connection closed dialect=%s", self.name)

    def is_timeout(self, exc: BaseException) -> bool:
        return self.connection_factory.is_timeout(exc)

    def test_connection(self, timeout_seconds: int = CONNECTION_TEST_TIMEOUT_SECONDS) -> ConnectionCheck:
        """Open a connection and run the dialect's trivial SELECT. Never raises."""
        started = time.perf_counter()
        try:
            with self.connect(timeout_seconds) as conn:
                cur = conn.cursor()
                try:
                    cur.execute(self.sql_dialect.ping_sql)
                    cur.fetchall()
                finally:
                    cur.close()
        except EngineError as e:
            kind, message = e.kind, e.message
        except Exception as e:
            kind = ErrorKind.TIMEOUT if self.is_timeout(e) else ErrorKind.CONNECTION_FAILED
            message = str(e)
        else:
            kind, message = None, "connection ok"
        duration_ms = int((time.perf_counter() - started) * 1000)
        if kind is None:
            logger.info("connection test ok dialect=%s duration_ms=%d", self.name, duration_ms)
        else:
            logger.warning("connection test failed dialect=%s [%s] %s", self.name, kind.value, message)
        return ConnectionCheck(
            ok=kind is None, dialect=self.name, message=message, duration_ms=duration_ms, error_kind=kind
        )


class DialectCatalog:
    """Read-only after construction; safe to share between job workers."""

    def __init__(self, factories: Mapping[DialectId, ConnectionFactory] | None = None) -> None:
        merged = default_factories()
        if factories:
            merged.update(factories)
        self._factories = MappingProxyType(merged)
        self._dialects = MappingProxyType({d: cls() for d, cls in DIALECTS.items()})

    def dialect(self, dialect_id: DialectId) -> SqlDialect:
        return self._dialects[dialect_id]

    def classify(self, connection_string: str) -> DialectId:
        text = (connection_string or "").lower()
        params = parse_connection_string(text)
        if "server=" in text and "uid=" in text:
            return DialectId.MYSQL
        if "host=" in text and "username=" in text:
            return DialectId.POSTGRESQL
        if "data source=" in text and "user id=" in text and _has_oracle_hint(text, params):
            return DialectId.ORACLE
        if "initial catalog=" in text or "trusted_connection=" in text:
            return DialectId.SQLSERVER
        if "user id=" in text and ("server=" in text or "data source=" in text):
            return DialectId.SQLSERVER
        return DialectId.SQLITE

    def resolve(self, connection_string: str) -> DialectHandle:
        dialect_id = self.classify(connection_string)
        fallback = dialect_id == DialectId.SQLITE and not _looks_like_sqlite(connection_string)
        if fallback:
            # 接続文字列は資格情報を含み得るためログに出さない
            logger.warning("UnknownDialect: connection string not recognised, falling back to SQLite")
        return DialectHandle(
            dialect_id=dialect_id,
            connection_factory=self._factories[dialect_id],
            sql_dialect=self._dialects[dialect_id],
            connection_string=connection_string,
            fallback=fallback,
        )


def _has_oracle_hint(text: str, params: dict[str, str]) -> bool:
    if "tns" in text or "oracle" in text or "(description=" in text:
        return True
    return looks_like_oracle_data_source(params.get("data source", ""))


def _looks_like_sqlite(connection_string: str) -> bool:
    text = (connection_string or "").strip()
    if not text:
        return False
    if "data source=" in text.lower():
        return True
    # 裸のファイルパス / :memory:
    return "=" not in text
