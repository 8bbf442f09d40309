"""
Read-only SQL executor.

Every statement the query layer issues runs through `execute_readonly`, which:
  1. Opens a READ ONLY transaction (Postgres-enforced)
  2. Accepts SQLAlchemy Core statements (bound parameters) or plain text
  3. Converts Decimal/date/datetime to JSON-safe Python types
  4. Enforces query timeout (statement_timeout)
  5. Wraps driver / SQLAlchemy failures in ``DataSourceError``
"""
from __future__ import annotations

import decimal
import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import Executable

from src.core.config import get_settings
from src.core.errors import DataSourceError
from src.db.connection import readonly_connection
from src.core.logging import get_logger

logger = get_logger(__name__)


def _serialise_value(val: Any) -> Any:
    """Convert DB types to JSON-serialisable Python types."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, (datetime.date, datetime.datetime)):
        return val.isoformat()
    if isinstance(val, datetime.timedelta):
        return str(val)
    return val


def execute_readonly(
    sql: str | Executable,
    params: dict | None = None,
    timeout_ms: int | None = None,
) -> list[dict[str, Any]]:
    """Execute a read-only statement and return rows as serialisable dicts.

    Raises
    ------
    DataSourceError
        If the query fails for any reason.
    """
    if timeout_ms is None:
        timeout_ms = get_settings().query_timeout_ms
    stmt = text(sql) if isinstance(sql, str) else sql

    try:
        with readonly_connection() as conn:
            # Per-query timeout
            conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))

            result = conn.execute(stmt, params or {})
            columns = list(result.keys())
            rows = [
                {col: _serialise_value(val) for col, val in zip(columns, row)}
                for row in result.fetchall()
            ]
    except SQLAlchemyError as exc:
        logger.exception("Read-only query failed")
        raise DataSourceError(f"Query failed: {exc.__class__.__name__}") from exc

    logger.debug("Returned %d rows", len(rows))
    return rows
