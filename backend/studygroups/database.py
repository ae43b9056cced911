"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides
small helpers used by the application, the import runner and tests.

SQLite connections enforce foreign keys and run in WAL mode, so readers
never wait on a writer. Write transactions opened through
`begin_write()` take the write lock up front (`BEGIN IMMEDIATE`), which
turns check-then-delete sequences into serialized units; every other
transaction starts with a plain `BEGIN`. On server databases the
services use `SELECT ... FOR UPDATE` instead.
"""

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session

from .config import settings

IMMEDIATE = "sqlite_immediate"


def _make_engine(url: str):
    if not url.startswith("sqlite"):
        return create_engine(url, echo=False, pool_pre_ping=True)
    engine = create_engine(url, echo=False, connect_args={"check_same_thread": False, "timeout": 30})
    in_memory = ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite:/")

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # let SQLAlchemy emit BEGIN itself instead of pysqlite's implicit one
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE" if conn.get_execution_options().get(IMMEDIATE) else "BEGIN")

    return engine


engine = _make_engine(settings.DATABASE_URL)


def begin_write(session: Session) -> None:
    """Start the session's transaction holding the write lock.

    No-op when the session already has a transaction open. The option is
    ignored by non-SQLite backends.
    """
    if session.in_transaction():
        return
    session.connection(execution_options={IMMEDIATE: True})


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    scripts; production deployments should rely on a proper migration
    tool (alembic) instead.
    """
    from . import models  # noqa: F401  (registers tables on the metadata)
    SQLModel.metadata.create_all(engine)


def drop_db_and_tables():
    """Drop every table known to the metadata. Used by tests."""
    from . import models  # noqa: F401
    SQLModel.metadata.drop_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes. Services decide when to commit.
    """
    with Session(engine) as session:
        yield session
