from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..models.errors import EngineError, ErrorKind
from .catalog import DialectHandle

"""Table existence / creation / clearing on an open connection.

All failures are job-fatal and surface as EngineError(DDL_FAILED), or
TIMEOUT when the driver reports the statement deadline; the transaction is
rolled back before raising. Table listing fails with QUERY_FAILED instead.
"""

__all__ = [
    "rollback",
    "table_exists",
    "ensure_table",
    "clear_table",
    "list_tables",
    "search_tables",
]

logger = logging.getLogger(__name__)


def rollback(conn: Any, handle: DialectHandle) -> bool:
    """Roll back the open transaction. A failing rollback (dead connection) is
    logged and reported as False so the original error stays the one raised."""
    try:
        conn.rollback()
    except Exception as e:
        logger.warning("rollback failed dialect=%s: %s", handle.name, e)
        return False
    return True


def _fail(conn: Any, handle: DialectHandle, action: str, exc: Exception) -> EngineError:
    rollback(conn, handle)
    kind = ErrorKind.TIMEOUT if handle.is_timeout(exc) else ErrorKind.DDL_FAILED
    return EngineError(kind, f"{action} failed: {exc}", dialect=handle.name)


def table_exists(conn: Any, handle: DialectHandle, table: str) -> bool:
    sql, params = handle.sql_dialect.table_exists_sql(table)
    cur = conn.cursor()
    try:
        cur.execute(sql, params)
        row = cur.fetchone()
    except Exception as e:
        raise _fail(conn, handle, f"table lookup '{table}'", e) from e
    finally:
        cur.close()
    return bool(row and row[0])


def ensure_table(conn: Any, handle: DialectHandle, table: str, columns: Mapping[str, str]) -> bool:
    """Create table (neutral column types) when missing. Returns True when created."""
    if table_exists(conn, handle, table):
        return False
    ddl = handle.sql_dialect.create_table_if_not_exists(table, columns)
    logger.debug("create table dialect=%s sql=%s", handle.name, ddl)
    cur = conn.cursor()
    try:
        cur.execute(ddl)
        conn.commit()
    except Exception as e:
        raise _fail(conn, handle, f"create table '{table}'", e) from e
    finally:
        cur.close()
    logger.info("created table %s (%s, %d columns)", table, handle.name, len(columns))
    return True


def clear_table(conn: Any, handle: DialectHandle, table: str) -> None:
    sql = handle.sql_dialect.clear_table(table)
    cur = conn.cursor()
    try:
        cur.execute(sql)
        conn.commit()
    except Exception as e:
        raise _fail(conn, handle, f"clear table '{table}'", e) from e
    finally:
        cur.close()
    logger.info("cleared table %s (%s)", table, handle.name)


def list_tables(conn: Any, handle: DialectHandle) -> list[str]:
    """User table names of the connected database/schema, ordered by name."""
    cur = conn.cursor()
    try:
        cur.execute(handle.sql_dialect.list_tables_sql())
        rows = cur.fetchall()
    except Exception as e:
        rollback(conn, handle)
        kind = ErrorKind.TIMEOUT if handle.is_timeout(e) else ErrorKind.QUERY_FAILED
        raise EngineError(kind, f"table listing failed: {e}", dialect=handle.name) from e
    finally:
        cur.close()
    return [str(r[0]) for r in rows]


def search_tables(conn: Any, handle: DialectHandle, keyword: str) -> list[str]:
    """Case-insensitive substring match over list_tables; a blank keyword lists all."""
    needle = (keyword or "").strip().lower()
    names = list_tables(conn, handle)
    if not needle:
        return names
    return [n for n in names if needle in n.lower()]
