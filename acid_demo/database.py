"""Database configuration and session management.

This module builds the SQLAlchemy engine and session factory, declares
the declarative base, creates the schema at startup, and provides the
engine and session factory as FastAPI dependencies. Services never reach
for these module-level objects themselves: they receive an engine or a
session factory from their caller.
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base

from .core import get_settings
from .errors import StorageError

logger = logging.getLogger(__name__)


Base = declarative_base()
"""Declarative base class for SQLAlchemy models."""


def _configure_sqlite_connection(dbapi_connection, connection_record):
    # pysqlite's own BEGIN handling is disabled; _begin_sqlite_transaction
    # emits BEGIN instead, so reads run inside the transaction too.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    # WAL gives each transaction a snapshot and lets a writer commit while
    # another connection is still reading.
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _begin_sqlite_transaction(conn):
    conn.exec_driver_sql("BEGIN")


def build_engine(url: str, pool_size: int = 5, pool_timeout: int = 30) -> Engine:
    """
    Create an engine for ``url``.

    SQLite only enforces foreign keys (and therefore ``ON DELETE CASCADE``)
    when asked to on every connection, so a connect hook is installed for
    that dialect. The same hook switches the database to WAL journaling,
    and a ``begin`` hook issues ``BEGIN`` explicitly: pysqlite would
    otherwise start a transaction only right before the first write, and
    reads made earlier would not belong to it.

    Args:
        url (str): Database connection string.
        pool_size (int): Number of pooled connections kept open.
        pool_timeout (int): Seconds to wait for a free connection.

    Returns:
        Engine: Configured engine.
    """
    options = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    # in-memory SQLite uses a single-connection pool without these knobs
    if ":memory:" not in url:
        options.update(pool_size=pool_size, pool_timeout=pool_timeout)

    engine = create_engine(url, future=True, **options)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _configure_sqlite_connection)
        event.listen(engine, "begin", _begin_sqlite_transaction)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    """
    Create a session factory bound to ``engine``.

    Objects stay loaded after commit so services can hand them back to
    callers once the session is closed.
    """
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


def init_schema(engine: Engine) -> None:
    """
    Create the ``users`` and ``addresses`` tables if they do not exist.

    Raises:
        StorageError: If the database is unreachable or rejects the DDL.
    """
    from . import models  # noqa: F401  registers tables on Base.metadata

    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as exc:
        logger.error("Schema creation failed: %s", exc)
        raise StorageError(f"Could not create schema: {exc}") from exc
    logger.info("Database models synchronized")


settings = get_settings()


engine = build_engine(
    settings.database_url,
    pool_size=settings.DB_POOL_SIZE,
    pool_timeout=settings.DB_POOL_TIMEOUT,
)
"""SQLAlchemy engine bound to the configured database URL."""


SessionLocal = build_session_factory(engine)
"""Factory for database sessions."""


def get_engine() -> Engine:
    """FastAPI dependency returning the application engine."""
    return engine


def get_session_factory() -> sessionmaker:
    """FastAPI dependency returning the application session factory."""
    return SessionLocal
