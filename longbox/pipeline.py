"""Post-scan link pipeline.

New files are linked to series after the applier has committed. The work
runs in a background thread with its own session; a file that fails is
rolled back, logged and counted, and the pipeline moves on. Nothing here
can undo an apply.
"""

from __future__ import annotations

import dataclasses
import threading
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from sqlmodel import Session, col, select

from .comicinfo import read_embedded_metadata
from .config import LongboxConfig
from .database import get_engine
from .logging_config import get_logger
from .matcher import LinkResult, auto_link_file_to_series
from .models import ComicFile, FileMetadata, FileStatus, set_file_status
from .registry import FolderSeriesRegistry
from .sidecar import SeriesSidecar

logger = get_logger(__name__)


@dataclasses.dataclass
class LinkStats:
    processed: int = 0
    metadata_cached: int = 0
    linked: int = 0
    created: int = 0
    folder_scoped: int = 0
    needs_confirmation: int = 0
    no_name: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return dataclasses.asdict(self)


def cache_embedded_metadata(session: Session, file: ComicFile) -> bool:
    """Store the file's ComicInfo.xml values in its FileMetadata row.

    Returns False when the archive has no readable ComicInfo.xml.
    """
    embedded = read_embedded_metadata(Path(file.path))
    if embedded is None:
        return False

    values = embedded.model_dump()
    values["issue_sort"] = embedded.issue_sort
    meta = file.metadata_rel
    if meta is None:
        file.metadata_rel = FileMetadata(file_id=file.id, **values)
    else:
        for key, value in values.items():
            setattr(meta, key, value)
        session.add(meta)
    session.flush()
    return True


def _count(stats: LinkStats, result: LinkResult) -> None:
    if result.success:
        stats.linked += 1
        if result.match_type == "created":
            stats.created += 1
        elif result.match_type.startswith("folder-"):
            stats.folder_scoped += 1
    elif result.needs_confirmation:
        stats.needs_confirmation += 1
    elif result.match_type == "no-name":
        stats.no_name += 1


def link_new_file(
    session: Session,
    file_id: int,
    config: LongboxConfig,
    registry: Optional[FolderSeriesRegistry],
    stats: LinkStats,
) -> Optional[LinkResult]:
    """Cache metadata for one file, auto-link it and commit."""
    file = session.get(ComicFile, file_id)
    if file is None:
        logger.debug(f"File {file_id} disappeared before linking")
        return None

    if cache_embedded_metadata(session, file):
        stats.metadata_cached += 1

    result = auto_link_file_to_series(session, file_id, config, registry=registry)
    if result.success:
        set_file_status(file, FileStatus.INDEXED)
        session.add(file)
    session.commit()
    _count(stats, result)
    return result


def link_files(
    file_ids: Sequence[int],
    config: LongboxConfig,
    registry: Optional[FolderSeriesRegistry] = None,
    stats: Optional[LinkStats] = None,
) -> LinkStats:
    """Run the per-file pipeline over `file_ids` in a fresh session."""
    stats = stats if stats is not None else LinkStats()
    with Session(get_engine()) as session:
        for file_id in file_ids:
            stats.processed += 1
            try:
                link_new_file(session, file_id, config, registry, stats)
            except Exception as exc:
                session.rollback()
                stats.failed += 1
                logger.error(f"Failed to link file {file_id}: {exc}")
    logger.info(
        f"Linked {stats.linked}/{stats.processed} files "
        f"({stats.created} new series, {stats.needs_confirmation} need confirmation, "
        f"{stats.failed} failed)"
    )
    return stats


class LinkJob:
    """Background link run for the files an apply just added."""

    def __init__(
        self,
        file_ids: Sequence[int],
        config: LongboxConfig,
        registry: Optional[FolderSeriesRegistry] = None,
    ):
        self.file_ids: List[int] = list(file_ids)
        self.config = config
        self.registry = registry
        self.stats = LinkStats()
        self._thread = threading.Thread(target=self._run, name="longbox-link")

    def _run(self) -> None:
        try:
            link_files(self.file_ids, self.config, self.registry, self.stats)
        except Exception:
            logger.exception("Link pipeline aborted")

    def start(self) -> "LinkJob":
        self._thread.start()
        return self

    def join(self, timeout: Optional[float] = None) -> LinkStats:
        self._thread.join(timeout)
        return self.stats

    @property
    def done(self) -> bool:
        return not self._thread.is_alive()


def start_link_job(
    file_ids: Sequence[int],
    sidecars: Mapping[str, SeriesSidecar],
    config: LongboxConfig,
) -> LinkJob:
    """Start linking `file_ids` in a background thread and return the job."""
    registry = FolderSeriesRegistry.from_sidecars(
        sidecars, config.matching.folder_match_threshold
    )
    logger.info(
        f"Starting link job for {len(file_ids)} files "
        f"({len(registry)} series declared in series.json)"
    )
    return LinkJob(file_ids, config, registry).start()


def process_unlinked_files(
    library_id: int,
    config: LongboxConfig,
    sidecars: Optional[Mapping[str, SeriesSidecar]] = None,
) -> LinkStats:
    """Synchronously run the pipeline for every file of a library without a series."""
    with Session(get_engine()) as session:
        file_ids = session.exec(
            select(ComicFile.id)
            .where(
                ComicFile.library_id == library_id,
                col(ComicFile.series_id).is_(None),
                col(ComicFile.status).in_([FileStatus.PENDING, FileStatus.INDEXED]),
            )
            .order_by(ComicFile.relative_path)
        ).all()

    registry = FolderSeriesRegistry.from_sidecars(
        sidecars or {}, config.matching.folder_match_threshold
    )
    logger.info(f"Processing {len(file_ids)} unlinked files in library {library_id}")
    return link_files(list(file_ids), config, registry)
