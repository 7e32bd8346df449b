"""
Database access for the consolidator.

Uses SQLAlchemy 2.0 Core. The consolidation routines never rely on ambient
connection state: callers hand in an Engine and every run acquires its own
scoped transaction.
"""

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session

from consolidator.config import settings

# Driver behind plain postgresql:// URLs; error diagnostics assume psycopg2
POSTGRES_DRIVERNAME = "postgresql+psycopg2"


# =============================================================================
# Database Engine and Session
# =============================================================================

def _sqlite_on_connect(dbapi_connection, connection_record):
    """Take BEGIN away from pysqlite and switch on FOREIGN KEY enforcement."""
    # pysqlite defers BEGIN until the first DML statement, which would leave
    # the duplicate scan outside the transaction; "begin" below emits it instead
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_on_begin(conn):
    # IMMEDIATE takes the write lock up front: other writers wait (or fail with
    # "database is locked") instead of committing between scan and purge
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL (defaults to configured database).

    PostgreSQL engines always use psycopg2 and get pool and statement-timeout
    settings. SQLite engines get foreign key enforcement and transactions
    that begin before the first read.
    """
    url = make_url(url or settings.database.url)

    if url.get_backend_name() == "sqlite":
        engine = create_engine(url, echo=echo)
        event.listen(engine, "connect", _sqlite_on_connect)
        event.listen(engine, "begin", _sqlite_on_begin)
        return engine

    if url.drivername == "postgresql":
        url = url.set(drivername=POSTGRES_DRIVERNAME)

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=5,
        pool_timeout=30,
        pool_recycle=1800,
        connect_args={
            "connect_timeout": 10,
            "options": f"-c statement_timeout={settings.database.statement_timeout_ms}",
        },
    )


@lru_cache()
def get_engine() -> Engine:
    """Shared engine for the configured database."""
    return create_db_engine(echo=settings.pipeline.log_level == "DEBUG")


def supported_isolation_level(engine: Engine, requested: str) -> Optional[str]:
    """
    Isolation level to set on the consolidation connection, or None.

    SQLite transactions are serializable already, and the engine's own
    BEGIN IMMEDIATE must not be undone by pysqlite's isolation handling.
    """
    if engine.dialect.name == "sqlite":
        return None
    return requested


@contextmanager
def get_session(engine: Optional[Engine] = None) -> Iterator[Session]:
    """Context manager for ORM sessions."""
    session = sessionmaker(autoflush=False, bind=engine or get_engine())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
