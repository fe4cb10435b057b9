"""
Database Engine and Session Management

Builds the pooled SQLAlchemy engine the stats repository runs on.
SQLite (file or in-memory) and server databases (MySQL, PostgreSQL, ...)
are both supported; only the pool setup differs.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def is_embedded(database_url: str) -> bool:
    """True for file-based/embedded backends (SQLite)"""
    return make_url(database_url).get_backend_name() == 'sqlite'


def create_data_source(database_url: str, pool_size: int = 5, echo: bool = False) -> Engine:
    """
    Create a pooled engine for the given database URL.

    Args:
        database_url: SQLAlchemy database URL
        pool_size: Connections kept open for server databases
        echo: Log all SQL statements (debugging)

    Returns:
        SQLAlchemy Engine

    Raises:
        sqlalchemy.exc.ArgumentError / ImportError if the URL or driver is unusable
    """
    if is_embedded(database_url):
        url = make_url(database_url)
        if url.database in (None, '', ':memory:'):
            # One shared connection, otherwise every checkout sees an empty database
            engine = create_engine(
                database_url,
                echo=echo,
                connect_args={'check_same_thread': False},  # Required for SQLite with threads
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(
                database_url,
                echo=echo,
                connect_args={'check_same_thread': False, 'timeout': 30},
            )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            pool_pre_ping=True,  # Survive server-side connection drops
        )

    logger.info(f"Created {engine.dialect.name} data source: {engine.url.render_as_string(hide_password=True)}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    # Detached records must keep their loaded values after commit
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker, operation: Optional[str] = None) -> Iterator[Session]:
    """
    Context manager for database sessions.

    Automatically handles commit/rollback and cleanup.

    Usage:
        with session_scope(factory, "load") as session:
            session.execute(...)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database error during {operation or 'operation'}, rolling back: {e}")
        raise
    finally:
        try:
            session.close()
        except SQLAlchemyError as e:
            # The transaction already finished, a failed release must not undo its outcome
            logger.warning(f"Error releasing session after {operation or 'operation'}: {e}")
