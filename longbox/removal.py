"""Removing catalog files and settling the series they leave behind.

`remove_file` is the only way a file row leaves the catalog. It runs, in
order:

1. mark collection entries of the file unavailable
2. delete the row (metadata and reading progress cascade)
3. decrement folder counts at the file's folder

The affected series id is returned so the caller can pass it, together with
others, to `settle_series` once its file deletions are committed. Settling
archives series that lost their last file and refreshes the cover of the
others. A series that fails to settle is rolled back and logged; the
remaining series are still processed. A cover that cannot be regenerated
keeps the previous one.
"""

from __future__ import annotations

import dataclasses
from typing import Iterable, Optional

from sqlmodel import Session, select

from .config import LongboxConfig
from .covers import recalculate_series_cover
from .folders import increment_folder_file_counts
from .logging_config import get_logger
from .models import CollectionItem, ComicFile
from .series import check_and_archive_empty_series, update_series_progress

logger = get_logger(__name__)


@dataclasses.dataclass
class SettleStats:
    archived: int = 0
    covers_updated: int = 0
    cover_failures: int = 0
    failed: int = 0


def remove_file(session: Session, file: ComicFile) -> Optional[int]:
    """Delete one file row with its dependents. Flushes; the caller commits."""
    series_id = file.series_id
    folder_id = file.folder_id

    items = session.exec(select(CollectionItem).where(CollectionItem.file_id == file.id)).all()
    for item in items:
        item.is_available = False
        item.file_id = None
        session.add(item)

    logger.debug(f"Removing {file.relative_path} (id={file.id})")
    session.delete(file)
    session.flush()

    if folder_id is not None:
        increment_folder_file_counts(session, folder_id, -1)
    return series_id


def settle_series(
    session: Session, series_ids: Iterable[Optional[int]], config: LongboxConfig
) -> SettleStats:
    """Archive emptied series and refresh covers of the rest. Commits per series."""
    stats = SettleStats()
    for series_id in sorted({sid for sid in series_ids if sid is not None}):
        try:
            archived = check_and_archive_empty_series(session, series_id)
            update_series_progress(session, series_id)
            session.commit()
        except Exception as exc:
            session.rollback()
            stats.failed += 1
            logger.error(f"Failed to settle series {series_id}: {exc}")
            continue

        if archived:
            stats.archived += 1
            continue
        try:
            recalculate_series_cover(session, series_id, config)
            session.commit()
        except Exception as exc:
            session.rollback()
            stats.cover_failures += 1
            logger.warning(f"Cover refresh failed for series {series_id}: {exc}")
            continue
        stats.covers_updated += 1
    return stats
