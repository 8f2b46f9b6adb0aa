"""Database engine and session management.

One engine per process, sessions per unit of work. ``session_scope`` wraps a
unit of work in a single transaction: commit on success, rollback on error.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from invoice_ai.db.models import Base
from invoice_ai.shared.config import Settings

logger = logging.getLogger(__name__)


def create_db_engine(settings: Settings) -> Engine:
    """Create the SQLAlchemy engine from settings.

    SQLite connections get foreign keys enabled and explicit BEGIN handling so
    SAVEPOINTs nest inside the surrounding transaction, matching PostgreSQL.
    Transactions start with BEGIN IMMEDIATE: the write lock is taken up front,
    so concurrent writers queue on busy_timeout instead of failing when two
    readers both try to upgrade.

    Args:
        settings: Application settings with database_url

    Returns:
        Configured Engine
    """
    url = settings.database_url
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if settings.database_isolation_level:
        kwargs["isolation_level"] = settings.database_isolation_level

    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
            # Let SQLAlchemy emit BEGIN itself (pysqlite defers it otherwise).
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin_sqlite(conn) -> None:  # type: ignore[no-untyped-def]
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations.

    Args:
        session_factory: Factory bound to the application engine

    Yields:
        Session whose work is committed on normal exit and rolled back on error
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
