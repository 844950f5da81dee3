"""Database configuration and session management for SQLite.

The engine runs SQLite in WAL mode so the scheduled sync job can write
tokens and mappings while request handlers read them, and turns foreign key
enforcement on for every pooled connection.

The sync engine leans on database guarantees rather than on in-process
state:

    - **One credential per user**: ``credential.user_id`` is the primary key.
    - **One mapping per event on each side**: ``event_mapping`` carries UNIQUE
      constraints on both ``local_event_id`` and ``remote_event_id``, so a
      racing second insert fails instead of producing a duplicate row.
    - **Savepoints**: mapping upserts and event imports run inside
      ``Session.begin_nested()``. pysqlite defers BEGIN until the first DML
      statement, which breaks SAVEPOINT semantics, so the driver's own
      transaction handling is switched off and SQLAlchemy emits BEGIN itself.
"""

from sqlalchemy import event as sa_event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app.core.config import settings

# FastAPI may hand a session to a different thread than the one that opened it.
connect_args = {"check_same_thread": False}


def configure_sqlite(target: Engine) -> Engine:
    """Install connection pragmas and explicit BEGIN handling on *target*."""

    @sa_event.listens_for(target, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Stop pysqlite from issuing its own BEGIN/COMMIT
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @sa_event.listens_for(target, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return target


engine = configure_sqlite(
    create_engine(
        settings.database_url,
        connect_args=connect_args,
        echo=settings.debug,
    )
)


def create_db_and_tables():
    """Create all database tables."""
    # Registers every table on SQLModel.metadata
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def release_snapshot(session: Session) -> None:
    """End the session's transaction before awaiting network I/O.

    A deferred SQLite transaction keeps the WAL snapshot of its first read.
    If another connection commits while we wait on the network, our next
    write fails with "database is locked". Objects are expired by the
    commit and reload on next access.
    """
    session.commit()


def get_session():
    """Dependency for getting database session."""
    with Session(engine) as session:
        yield session
