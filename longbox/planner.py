"""Scan planning: reconcile what is on disk with the catalog.

The planner is read-only. It classifies every discovered file as unchanged,
moved or new, and every catalog row that vanished as orphaned. Nothing is
written until the plan is handed to the applier.
"""

from __future__ import annotations

import dataclasses
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional

from sqlmodel import Session, select

from .config import LongboxConfig, ScannerConfig
from .discovery import DiscoveredFile, DiscoveryResult, ScanError, discover_files
from .errors import PreconditionError
from .fingerprint import compute_fingerprint
from .library import get_library
from .logging_config import get_logger
from .models import ComicFile, FileStatus
from .sidecar import SeriesSidecar

logger = get_logger(__name__)


@dataclasses.dataclass(frozen=True)
class SnapshotEntry:
    id: int
    relative_path: str
    fingerprint: Optional[str]
    status: FileStatus


@dataclasses.dataclass
class ScanContext:
    """Catalog snapshot of one library, loaded once per scan."""

    library_id: int
    library_root: Path
    by_path: Dict[str, SnapshotEntry]
    by_fingerprint: Dict[str, List[SnapshotEntry]]

    @classmethod
    def load(cls, session: Session, library_id: int) -> "ScanContext":
        library = get_library(session, library_id)
        rows = session.exec(
            select(ComicFile.id, ComicFile.relative_path, ComicFile.fingerprint, ComicFile.status)
            .where(ComicFile.library_id == library_id)
            .order_by(ComicFile.id)
        ).all()

        by_path: Dict[str, SnapshotEntry] = {}
        by_fingerprint: Dict[str, List[SnapshotEntry]] = defaultdict(list)
        for file_id, relative_path, fingerprint, status in rows:
            entry = SnapshotEntry(file_id, relative_path, fingerprint, FileStatus(status))
            by_path[relative_path] = entry
            if fingerprint:
                by_fingerprint[fingerprint].append(entry)
        return cls(library_id, library.root, by_path, dict(by_fingerprint))


@dataclasses.dataclass
class MovedFile:
    file_id: int
    old_path: str
    new_path: str
    file: DiscoveredFile


@dataclasses.dataclass
class OrphanedFile:
    file_id: int
    path: str


@dataclasses.dataclass
class ScanResult:
    library_id: int
    library_root: Path
    total_files_scanned: int = 0
    new_files: List[DiscoveredFile] = dataclasses.field(default_factory=list)
    moved_files: List[MovedFile] = dataclasses.field(default_factory=list)
    orphaned_files: List[OrphanedFile] = dataclasses.field(default_factory=list)
    unchanged_files: List[DiscoveredFile] = dataclasses.field(default_factory=list)
    existing_orphaned_count: int = 0
    errors: List[ScanError] = dataclasses.field(default_factory=list)
    scan_duration: float = 0.0
    sidecars: Dict[str, SeriesSidecar] = dataclasses.field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(
            self.new_files
            or self.moved_files
            or self.orphaned_files
            or self.existing_orphaned_count
        )

    def summary(self) -> str:
        return (
            f"{self.total_files_scanned} scanned: {len(self.new_files)} new, "
            f"{len(self.moved_files)} moved, {len(self.orphaned_files)} orphaned, "
            f"{len(self.unchanged_files)} unchanged, {len(self.errors)} errors"
        )


def fingerprint_files(files: List[DiscoveredFile], scanner: ScannerConfig) -> List[ScanError]:
    """Fill in `fingerprint` for each file using a thread pool.

    Files that cannot be read keep `fingerprint=None` and yield a ScanError.
    """
    errors: List[ScanError] = []
    if not files:
        return errors

    with ThreadPoolExecutor(max_workers=max(1, scanner.workers)) as executor:
        future_to_file = {
            executor.submit(compute_fingerprint, f.path, scanner.fingerprint_bytes): f
            for f in files
        }
        for future in as_completed(future_to_file):
            file = future_to_file[future]
            try:
                file.fingerprint = future.result()
            except OSError as exc:
                logger.warning(f"Unable to fingerprint {file.relative_path}: {exc}")
                errors.append(ScanError(path=str(file.path), error=str(exc)))
    return errors


def plan_scan(
    context: ScanContext, discovery: DiscoveryResult, scanner: ScannerConfig
) -> ScanResult:
    """Classify discovered files against the snapshot in `context`."""
    result = ScanResult(
        library_id=context.library_id,
        library_root=context.library_root,
        total_files_scanned=len(discovery.files),
        errors=list(discovery.errors),
        sidecars=dict(discovery.sidecars),
    )

    # Exact path matches are settled first so a path that still exists on
    # disk can never be claimed as the old side of a move.
    matched_paths = set()
    unmatched: List[DiscoveredFile] = []
    for file in discovery.files:
        if file.relative_path in context.by_path:
            result.unchanged_files.append(file)
            matched_paths.add(file.relative_path)
        else:
            unmatched.append(file)

    result.errors.extend(fingerprint_files(unmatched, scanner))

    claimed = set()
    for file in unmatched:
        if file.fingerprint is None:
            continue
        candidate = next(
            (
                entry
                for entry in context.by_fingerprint.get(file.fingerprint, [])
                if entry.status != FileStatus.ORPHANED
                and entry.relative_path not in matched_paths
                and entry.id not in claimed
            ),
            None,
        )
        if candidate is None:
            result.new_files.append(file)
            continue
        claimed.add(candidate.id)
        result.moved_files.append(
            MovedFile(
                file_id=candidate.id,
                old_path=candidate.relative_path,
                new_path=file.relative_path,
                file=file,
            )
        )

    for entry in context.by_path.values():
        if entry.status == FileStatus.ORPHANED:
            result.existing_orphaned_count += 1
            continue
        if entry.relative_path in matched_paths or entry.id in claimed:
            continue
        result.orphaned_files.append(OrphanedFile(file_id=entry.id, path=entry.relative_path))

    return result


def scan_library(session: Session, library_id: int, config: LongboxConfig) -> ScanResult:
    """Discover files under the library root and plan the changes. Never writes."""
    started = time.monotonic()
    context = ScanContext.load(session, library_id)
    if not context.library_root.is_dir():
        # An unmounted root would otherwise plan every file as orphaned
        raise PreconditionError(f"Library root is not accessible: {context.library_root}")
    logger.info(f"Scanning {context.library_root} ({len(context.by_path)} files in catalog)")

    discovery = discover_files(context.library_root, config.scanner)
    result = plan_scan(context, discovery, config.scanner)
    result.scan_duration = time.monotonic() - started

    logger.info(f"Scan plan: {result.summary()} in {result.scan_duration:.2f}s")
    return result
