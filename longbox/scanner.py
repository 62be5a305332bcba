"""Library facade for Longbox.

Entry points for the CLI and other callers: each opens its own session on
the module engine.

Implements:
- scan preview (`scan_library`) and apply (`apply_scan_results`)
- per-library status counts
- library root verification
- startup preparation (tables, library registration, folder backfill)
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Dict, Optional

from sqlmodel import Session, func, select

from . import applier, planner
from .applier import ApplyResult
from .config import LongboxConfig
from .database import get_engine, init_db
from .folders import ensure_library_ready
from .library import get_libraries, get_library, register_library
from .logging_config import get_logger
from .models import ComicFile, FileStatus
from .planner import ScanResult

logger = get_logger(__name__)


@dataclasses.dataclass
class PathCheck:
    valid: bool
    error: Optional[str] = None
    is_directory: Optional[bool] = None


def scan_library(library_id: int, config: LongboxConfig) -> ScanResult:
    """Plan a scan of one library. Read-only."""
    with Session(get_engine()) as session:
        return planner.scan_library(session, library_id, config)


def apply_scan_results(
    result: ScanResult, config: LongboxConfig, link: bool = True
) -> ApplyResult:
    """Commit a scan plan; linking of new files continues in the background."""
    with Session(get_engine()) as session:
        return applier.apply_scan_results(session, result, config, link=link)


def _empty_stats() -> Dict[str, int]:
    stats = {"total": 0}
    stats.update({status.value: 0 for status in FileStatus})
    return stats


def get_library_stats(library_id: int) -> Dict[str, int]:
    """File counts of one library: total plus one entry per status."""
    with Session(get_engine()) as session:
        get_library(session, library_id)
        rows = session.exec(
            select(ComicFile.status, func.count())
            .where(ComicFile.library_id == library_id)
            .group_by(ComicFile.status)
        ).all()

    stats = _empty_stats()
    for status, count in rows:
        stats[FileStatus(status).value] = count
        stats["total"] += count
    return stats


def get_all_library_stats() -> Dict[int, Dict[str, int]]:
    """Status counts for every library, in one grouped query."""
    with Session(get_engine()) as session:
        stats = {library.id: _empty_stats() for library in get_libraries(session)}
        rows = session.exec(
            select(ComicFile.library_id, ComicFile.status, func.count()).group_by(
                ComicFile.library_id, ComicFile.status
            )
        ).all()

    for library_id, status, count in rows:
        entry = stats.setdefault(library_id, _empty_stats())
        entry[FileStatus(status).value] = count
        entry["total"] += count
    return stats


def verify_library_path(path: Path) -> PathCheck:
    try:
        is_dir = path.expanduser().is_dir()
        exists = path.expanduser().exists()
    except OSError as exc:
        return PathCheck(valid=False, error=str(exc))
    if not exists:
        return PathCheck(valid=False, error=f"Path does not exist: {path}")
    if not is_dir:
        return PathCheck(valid=False, error="Path is not a directory", is_directory=False)
    return PathCheck(valid=True, is_directory=True)


def prepare_library(config: LongboxConfig) -> int:
    """Create tables, register the configured library and backfill its folders.

    Returns the library id. The backfill runs to completion before this
    returns, so folder queries never see inconsistent counts.
    """
    init_db()
    with Session(get_engine()) as session:
        library = register_library(session, config.library_path, config.library.name)
        session.commit()
        library_id = library.id
        if ensure_library_ready(session, library_id):
            logger.info(f"Folder backfill finished for library {library_id}")
    return library_id
