"""Apply a scan plan to the catalog.

Steps run in a fixed order and commit at their own boundaries:

1. add new files as PENDING rows, growing the folder tree
2. move rows whose files were found elsewhere
3. mark vanished files ORPHANED, then remove them one by one
4. remove rows left ORPHANED by an earlier, interrupted apply
5. archive or re-cover the series that lost files
6. prune empty folders (when configured)
7. hand the new file ids to the background link pipeline

A row that fails to add, move or remove is rolled back and reported in
`ApplyResult.errors`; the other rows and steps still run.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from sqlmodel import Session, col, select

from .config import LongboxConfig
from .discovery import DiscoveredFile
from .errors import NotFoundError
from .fingerprint import compute_fingerprint
from .folders import ensure_folder_path, increment_folder_file_counts, prune_empty_folders
from .logging_config import get_logger
from .models import ComicFile, FileStatus, set_file_status
from .pipeline import LinkJob, start_link_job
from .planner import MovedFile, ScanResult
from .removal import remove_file, settle_series

logger = get_logger(__name__)


@dataclasses.dataclass
class ApplyResult:
    added: int = 0
    moved: int = 0
    orphaned: int = 0
    self_healed: int = 0
    series_archived: int = 0
    folders_pruned: int = 0
    new_file_ids: List[int] = dataclasses.field(default_factory=list)
    errors: List[str] = dataclasses.field(default_factory=list)
    link_job: Optional[LinkJob] = None


def _folder_id_for(session: Session, library_id: int, folder_path: str) -> Optional[int]:
    if not folder_path:
        return None
    return ensure_folder_path(session, library_id, folder_path).id


def add_file(
    session: Session, library_id: int, discovered: DiscoveredFile, config: LongboxConfig
) -> ComicFile:
    """Insert a PENDING row for a discovered file and count it in its folder."""
    if discovered.fingerprint is None:
        discovered.fingerprint = compute_fingerprint(
            discovered.path, config.scanner.fingerprint_bytes
        )

    folder_id = _folder_id_for(session, library_id, discovered.folder_path)
    file = ComicFile(
        library_id=library_id,
        path=str(discovered.path),
        relative_path=discovered.relative_path,
        filename=discovered.filename,
        extension=discovered.extension,
        size=discovered.size,
        modified_at=discovered.modified_at,
        fingerprint=discovered.fingerprint,
        status=FileStatus.PENDING,
        folder_id=folder_id,
    )
    session.add(file)
    session.flush()
    if folder_id is not None:
        increment_folder_file_counts(session, folder_id, 1)
    logger.debug(f"Added {discovered.relative_path} (id={file.id})")
    return file


def move_file(session: Session, library_id: int, moved: MovedFile) -> ComicFile:
    """Point an existing row at its new location. Status and series are kept."""
    file = session.get(ComicFile, moved.file_id)
    if file is None:
        raise NotFoundError("file", moved.file_id)

    old_folder_id = file.folder_id
    new_folder_id = _folder_id_for(session, library_id, moved.file.folder_path)

    file.path = str(moved.file.path)
    file.relative_path = moved.new_path
    file.filename = moved.file.filename
    file.modified_at = moved.file.modified_at
    file.updated_at = datetime.now(timezone.utc)
    if old_folder_id != new_folder_id:
        file.folder_id = new_folder_id
    session.add(file)
    session.flush()

    if old_folder_id != new_folder_id:
        if old_folder_id is not None:
            increment_folder_file_counts(session, old_folder_id, -1)
        if new_folder_id is not None:
            increment_folder_file_counts(session, new_folder_id, 1)
    logger.debug(f"Moved {moved.old_path} -> {moved.new_path} (id={file.id})")
    return file


def _remove_rows(
    session: Session, files: List[ComicFile], affected_series: Set[int], outcome: ApplyResult
) -> int:
    removed = 0
    for file in files:
        path = file.relative_path
        try:
            series_id = remove_file(session, file)
            session.commit()
        except Exception as exc:
            session.rollback()
            logger.error(f"Failed to remove {path}: {exc}")
            outcome.errors.append(f"{path}: {exc}")
            continue
        removed += 1
        if series_id is not None:
            affected_series.add(series_id)
    return removed


def apply_scan_results(
    session: Session, result: ScanResult, config: LongboxConfig, link: bool = True
) -> ApplyResult:
    """Commit a scan plan produced by `planner.scan_library`.

    With `link` set, the returned ApplyResult carries the started LinkJob;
    its outcome never affects what this function already committed.
    """
    library_id = result.library_id
    outcome = ApplyResult()
    affected_series: Set[int] = set()

    # 1. New files
    for discovered in result.new_files:
        try:
            file = add_file(session, library_id, discovered, config)
            session.commit()
        except Exception as exc:
            session.rollback()
            logger.error(f"Unable to add {discovered.relative_path}: {exc}")
            outcome.errors.append(f"{discovered.relative_path}: {exc}")
            continue
        outcome.new_file_ids.append(file.id)
        outcome.added += 1

    # 2. Moves
    for moved in result.moved_files:
        try:
            move_file(session, library_id, moved)
            session.commit()
        except Exception as exc:
            session.rollback()
            logger.error(f"Unable to move {moved.old_path} -> {moved.new_path}: {exc}")
            outcome.errors.append(f"{moved.old_path}: {exc}")
            continue
        outcome.moved += 1

    # 3. Orphans: flag all first so an interrupted run is picked up by step 4
    orphan_ids = [o.file_id for o in result.orphaned_files]
    orphans = (
        session.exec(select(ComicFile).where(col(ComicFile.id).in_(orphan_ids))).all()
        if orphan_ids
        else []
    )
    for file in orphans:
        if file.status != FileStatus.QUARANTINED:
            set_file_status(file, FileStatus.ORPHANED)
            session.add(file)
    session.commit()
    outcome.orphaned = _remove_rows(session, list(orphans), affected_series, outcome)

    # 4. Self-heal leftovers from an earlier apply
    leftovers = session.exec(
        select(ComicFile).where(
            ComicFile.library_id == library_id, ComicFile.status == FileStatus.ORPHANED
        )
    ).all()
    if leftovers:
        on_disk: Dict[str, DiscoveredFile] = {f.relative_path: f for f in result.unchanged_files}
        stale_paths = [f.relative_path for f in leftovers]
        outcome.self_healed = _remove_rows(session, list(leftovers), affected_series, outcome)
        logger.info(f"Removed {outcome.self_healed} rows left orphaned by an earlier apply")
        for path in stale_paths:
            discovered = on_disk.get(path)
            if discovered is None:
                continue
            try:
                file = add_file(session, library_id, discovered, config)
                session.commit()
            except Exception as exc:
                session.rollback()
                logger.error(f"Unable to re-add {path}: {exc}")
                outcome.errors.append(f"{path}: {exc}")
                continue
            outcome.new_file_ids.append(file.id)
            outcome.added += 1

    # 5. Series that lost files
    if affected_series:
        settled = settle_series(session, affected_series, config)
        outcome.series_archived = settled.archived

    # 6. Empty folders
    if config.scanner.prune_empty_folders:
        outcome.folders_pruned = prune_empty_folders(session, library_id)
        session.commit()

    logger.info(
        f"Applied scan: {outcome.added} added, {outcome.moved} moved, "
        f"{outcome.orphaned} removed, {outcome.series_archived} series archived"
    )

    # 7. Link pipeline
    if link and outcome.new_file_ids:
        outcome.link_job = start_link_job(outcome.new_file_ids, result.sidecars, config)
    return outcome
