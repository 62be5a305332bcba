"""Alembic migration helpers for Longbox.

Schema upgrades, stamping of databases created by `init_db`, and the
revision check behind `longbox migrate --check`.
"""

from __future__ import annotations

import shutil
import sqlite3
from pathlib import Path
from typing import Optional, Tuple

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory

from . import database
from .config import PROJECT_ROOT


def _alembic_cfg() -> AlembicConfig:
    """Build an AlembicConfig pointing at the project's migrations directory."""
    cfg = AlembicConfig(str(PROJECT_ROOT / "alembic.ini"))
    # Absolute so it works regardless of the current working directory
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    return cfg


def _db_path() -> Path:
    return database.DB_PATH


def _backup_db() -> None:
    """Copy library.db to library.db.bak (overwrites the previous backup)."""
    db_path = _db_path()
    if db_path.exists():
        shutil.copy2(db_path, db_path.with_suffix(".db.bak"))


def _alembic_version_exists() -> bool:
    db_path = _db_path()
    if not db_path.exists():
        return False
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
        )
        return cur.fetchone() is not None
    finally:
        conn.close()


def run_migrations(backup: bool = True) -> None:
    """Run ``alembic upgrade head``, backing up library.db first when asked."""
    if backup:
        _backup_db()
    alembic_command.upgrade(_alembic_cfg(), "head")


def stamp_if_needed() -> None:
    """Stamp a database created by ``init_db`` (no version table) to head.

    No-op when the database is missing or already versioned.
    """
    if not _db_path().exists():
        return
    if _alembic_version_exists():
        return
    alembic_command.stamp(_alembic_cfg(), "head")


def get_status() -> Tuple[Optional[str], str]:
    """Return (current_revision, head_revision).

    current_revision is None when the database does not exist or has never
    been stamped or migrated.
    """
    script = ScriptDirectory.from_config(_alembic_cfg())
    head_rev: str = script.get_current_head() or "unknown"

    if not _alembic_version_exists():
        return None, head_rev

    conn = sqlite3.connect(_db_path())
    try:
        cur = conn.execute("SELECT version_num FROM alembic_version")
        row = cur.fetchone()
        return (row[0] if row else None), head_rev
    finally:
        conn.close()
