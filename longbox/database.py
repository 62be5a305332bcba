"""Database connection and session management using SQLModel."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlmodel import Session, SQLModel, create_engine

from .config import DATA_DIR

DB_PATH = DATA_DIR / "library.db"
SQLITE_URL = f"sqlite:///{DB_PATH}"

# check_same_thread=False: the link pipeline opens sessions from a worker thread
engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})


@contextmanager
def session_scope() -> Iterator[Session]:
    """Open a session on the module engine. Callers commit explicitly."""
    with Session(get_engine()) as session:
        yield session


def init_db() -> None:
    """Create database tables."""
    # Import models to ensure they are registered with SQLModel.metadata
    from . import models  # noqa: F401

    with get_engine().connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")

    SQLModel.metadata.create_all(get_engine())


def reset_database() -> None:
    """Delete the database file and recreate it."""
    get_engine().dispose()
    if DB_PATH.exists():
        DB_PATH.unlink()
    init_db()


def get_engine():
    """Return the global engine instance."""
    return engine
