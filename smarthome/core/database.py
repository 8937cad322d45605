"""Database configuration and session management for SQLite.

The bridge keeps its token tables in a single row per node (see
smarthome.models.AuthState). SQLite is configured the same way for every
connection:

    - **WAL (Write-Ahead Logging)**: readers are not blocked while a token
      mutation is being written.

    - **Foreign Keys**: enforced for any tables added later.

    - **check_same_thread=False**: FastAPI runs sync dependencies and
      background tasks in a thread pool, so a connection may be used from
      a thread other than the one that opened it.
"""

from sqlalchemy import event as sa_event
from sqlmodel import SQLModel, create_engine

from smarthome.core.config import settings

connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug,  # Log SQL statements when DEBUG=true
)


@sa_event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite pragmas on each new connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_and_tables():
    """Create all database tables."""
    SQLModel.metadata.create_all(engine)