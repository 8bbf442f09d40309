"""SQLAlchemy engine for the Supabase / Postgres backend.

One pooled engine per process, created on first use.  Pool sizing and
recycling come from settings: the Supabase pooler closes idle connections,
so connections are recycled before that happens and pinged on checkout.

Every dashboard query is a read, so all of them go through
`readonly_connection`, which puts the transaction in READ ONLY mode first.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

APPLICATION_NAME = "insights-service"

_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle_seconds,
            connect_args={
                "connect_timeout": settings.db_connect_timeout_seconds,
                "application_name": APPLICATION_NAME,
            },
        )
        logger.info("DB engine created  host=%s  db=%s  pool=%d+%d",
                    settings.postgres_host, settings.postgres_db,
                    settings.db_pool_size, settings.db_max_overflow)
    return _engine


def dispose_engine() -> None:
    """Close pooled connections (app shutdown)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
        logger.info("DB engine disposed")


@contextmanager
def readonly_connection() -> Generator[Connection, None, None]:
    """Yield a pooled connection inside a READ ONLY transaction.

    The transaction is rolled back and the connection returned to the pool
    on exit.
    """
    with get_engine().connect() as conn:
        conn.execute(text("SET TRANSACTION READ ONLY"))
        yield conn
