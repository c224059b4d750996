"""SQLAlchemy engine/session plumbing for the local SQLite cache."""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy import event
from sqlalchemy.orm import Session
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Create Base class
Base = declarative_base()


def _enable_sqlite_transactions(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, own ``BEGIN``.

    pysqlite's legacy transaction handling never opens a transaction before
    DDL or ``PRAGMA`` statements, which would make schema migrations
    non-atomic.  Disabling it and emitting ``BEGIN`` ourselves keeps every
    statement of a migration inside the same transaction.  Foreign keys are
    off by default in SQLite and must be enabled per connection for
    ``ON DELETE CASCADE`` to work.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # noqa: ARG001
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create a SQLAlchemy engine for the cache database.

    Args:
        db_url: Database connection URL (``sqlite:///path`` or
            ``sqlite:///:memory:``)
        **kwargs: Additional arguments for create_engine

    Returns:
        A SQLAlchemy Engine instance
    """
    connect_args = kwargs.pop("connect_args", {})
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        # Every new connection to ``:memory:`` is a brand-new empty database,
        # so the whole process must share one connection.
        if ":memory:" in db_url or db_url in ("sqlite://", "sqlite:///"):
            kwargs.setdefault("poolclass", StaticPool)

    engine = create_engine(db_url, connect_args=connect_args, **kwargs)
    if is_sqlite:
        _enable_sqlite_transactions(engine)
    return engine


def make_sessionmaker(engine: Engine) -> sessionmaker:
    """Create a sessionmaker bound to the given engine.

    ``expire_on_commit=False`` keeps attributes accessible after a commit so
    rows can be converted to DTOs after the session is closed.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


@contextmanager
def db_session(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Database session context manager.

    Single way to manage database sessions in the cache.  Handles all error
    cases automatically - impossible to leak connections.

    1. Auto-commit on success
    2. Auto-rollback on error
    3. Always close session

    Usage:
        with db_session(factory) as db:
            db.add(chat)
            # Automatic commit + close

        # On error: automatic rollback + close, original exception re-raised
    """
    session = session_factory()

    try:
        yield session
        session.commit()
        logger.debug("Database session committed successfully")

    except Exception as e:
        session.rollback()
        logger.error(f"Database session rolled back due to error: {e}")
        raise

    finally:
        session.close()
