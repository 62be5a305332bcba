"""Series records: identity lookup, creation, lifecycle and progress."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from sqlmodel import Session, col, func, select

from .errors import ConflictError, NotFoundError
from .logging_config import get_logger
from .models import (
    CollectionItem,
    ComicFile,
    ReadingProgress,
    Series,
    SeriesProgress,
    SeriesStatus,
    transition_series,
)
from .sidecar import SeriesDefinition

logger = get_logger(__name__)


def get_series(session: Session, series_id: int) -> Series:
    series = session.get(Series, series_id)
    if series is None:
        raise NotFoundError("series", series_id)
    return series


def _identity_filter(statement, name: str, publisher: Optional[str]):
    statement = statement.where(func.lower(Series.name) == name.strip().lower())
    if publisher:
        return statement.where(func.lower(Series.publisher) == publisher.strip().lower())
    return statement.where(col(Series.publisher).is_(None))


def get_series_by_identity(
    session: Session,
    name: str,
    publisher: Optional[str] = None,
    year: Optional[int] = None,
    include_archived: bool = True,
) -> Optional[Series]:
    """Find a series by case-insensitive name and publisher.

    When `year` is given the start year must match too. Active series are
    preferred over archived ones.
    """
    statement = _identity_filter(select(Series), name, publisher)
    if year is not None:
        statement = statement.where(Series.start_year == year)
    if not include_archived:
        statement = statement.where(Series.status == SeriesStatus.ACTIVE)
    candidates = session.exec(statement.order_by(Series.id)).all()
    for series in candidates:
        if not series.is_archived:
            return series
    return candidates[0] if candidates else None


def get_series_by_name_and_year(session: Session, name: str, year: int) -> Optional[Series]:
    statement = (
        select(Series)
        .where(func.lower(Series.name) == name.strip().lower(), Series.start_year == year)
        .order_by(Series.id)
    )
    return session.exec(statement).first()


def get_active_series(session: Session) -> List[Series]:
    return list(
        session.exec(select(Series).where(Series.status == SeriesStatus.ACTIVE)).all()
    )


def create_series(
    session: Session,
    name: str,
    *,
    start_year: Optional[int] = None,
    end_year: Optional[int] = None,
    publisher: Optional[str] = None,
    aliases: Iterable[str] = (),
    primary_folder: Optional[str] = None,
    comicvine_id: Optional[str] = None,
    metron_id: Optional[str] = None,
    anilist_id: Optional[str] = None,
    mal_id: Optional[str] = None,
) -> Series:
    """Insert a new active series.

    Identity is name plus publisher; year is left out so multi-year runs stay
    one series. Raises ConflictError if that identity exists, archived or not.
    """
    name = name.strip()
    existing = get_series_by_identity(session, name, publisher)
    if existing is not None:
        raise ConflictError(
            f"Series '{existing.name}' ({existing.publisher or 'no publisher'}) already exists"
        )

    series = Series(
        name=name,
        start_year=start_year,
        end_year=end_year,
        publisher=publisher,
        aliases=",".join(a.strip() for a in aliases if a.strip()) or None,
        primary_folder=primary_folder,
        comicvine_id=comicvine_id,
        metron_id=metron_id,
        anilist_id=anilist_id,
        mal_id=mal_id,
    )
    session.add(series)
    session.flush()
    session.refresh(series)
    logger.info(f"Created series '{series.name}' (id={series.id})")
    return series


def _merge_definition(series: Series, definition: SeriesDefinition) -> List[str]:
    """Copy definition values into fields the series leaves empty."""
    updated = []
    fields = {
        "start_year": definition.start_year,
        "end_year": definition.end_year,
        "publisher": definition.publisher,
        "comicvine_id": definition.comicvine_id,
        "metron_id": definition.metron_id,
        "anilist_id": definition.anilist_id,
        "mal_id": definition.mal_id,
        "aliases": ",".join(definition.aliases) or None,
    }
    for field, value in fields.items():
        if value is not None and getattr(series, field) in (None, ""):
            setattr(series, field, value)
            updated.append(field)
    return updated


def find_or_create_from_definition(
    session: Session, definition: SeriesDefinition, folder_path: str
) -> Tuple[Series, bool]:
    """Resolve a sidecar definition to a series, creating it when missing.

    An archived match is restored. Empty fields of an existing series are
    filled from the definition. Returns `(series, created)`.
    """
    existing = get_series_by_identity(session, definition.name, definition.publisher)
    if existing is not None:
        restore_series(session, existing)
        updated = _merge_definition(existing, definition)
        if updated:
            existing.updated_at = datetime.now(timezone.utc)
            session.add(existing)
            session.flush()
            logger.debug(f"Merged {', '.join(updated)} into series '{existing.name}'")
        return existing, False

    series = create_series(
        session,
        definition.name,
        start_year=definition.start_year,
        end_year=definition.end_year,
        publisher=definition.publisher,
        aliases=definition.aliases,
        primary_folder=folder_path or None,
        comicvine_id=definition.comicvine_id,
        metron_id=definition.metron_id,
        anilist_id=definition.anilist_id,
        mal_id=definition.mal_id,
    )
    return series, True


# --- Lifecycle ---


def _set_series_items_available(session: Session, series_id: int, available: bool) -> int:
    items = session.exec(select(CollectionItem).where(CollectionItem.series_id == series_id)).all()
    for item in items:
        item.is_available = available
        session.add(item)
    return len(items)


def archive_series(session: Session, series: Series) -> bool:
    """Archive a series and hide its collection entries. False if already archived."""
    if not transition_series(series, SeriesStatus.ARCHIVED):
        return False
    _set_series_items_available(session, series.id, False)
    session.add(series)
    session.flush()
    logger.info(f"Archived series '{series.name}' (id={series.id})")
    return True


def restore_series(session: Session, series: Series) -> bool:
    """Bring an archived series back along with its collection entries."""
    if not transition_series(series, SeriesStatus.ACTIVE):
        return False
    _set_series_items_available(session, series.id, True)
    session.add(series)
    session.flush()
    logger.info(f"Restored archived series '{series.name}' (id={series.id})")
    return True


def count_series_files(session: Session, series_id: int) -> int:
    return session.exec(
        select(func.count()).select_from(ComicFile).where(ComicFile.series_id == series_id)
    ).one()


def check_and_archive_empty_series(session: Session, series_id: int) -> bool:
    """Archive the series if no file references it. Returns True when archived."""
    series = session.get(Series, series_id)
    if series is None:
        return False
    if count_series_files(session, series_id) > 0:
        return False
    return archive_series(session, series)


# --- Progress ---


def issue_order(file: ComicFile) -> tuple:
    """Reading order: numbered issues first by number, then by filename."""
    meta = file.metadata_rel
    issue_sort = meta.issue_sort if meta is not None else None
    return (issue_sort is None, issue_sort or 0.0, file.filename.lower())


def series_files_in_order(session: Session, series_id: int) -> List[ComicFile]:
    files = session.exec(select(ComicFile).where(ComicFile.series_id == series_id)).all()
    return sorted(files, key=issue_order)


def update_series_progress(session: Session, series_id: int) -> SeriesProgress:
    """Recompute the reading aggregates of one series.

    The next unread issue is the first one in progress, else the first unread
    issue after the most recently read one, else the first unread issue.
    """
    files = series_files_in_order(session, series_id)
    file_ids = [f.id for f in files]
    rows = (
        session.exec(select(ReadingProgress).where(col(ReadingProgress.file_id).in_(file_ids))).all()
        if file_ids
        else []
    )
    by_file = {row.file_id: row for row in rows}

    def is_read(file_id: int) -> bool:
        row = by_file.get(file_id)
        return row is not None and row.completed

    def in_progress(file_id: int) -> bool:
        row = by_file.get(file_id)
        return row is not None and not row.completed and row.current_page > 0

    read_rows = [row for row in rows if row.last_read_at is not None]
    last_read = max(read_rows, key=lambda row: row.last_read_at, default=None)

    next_unread: Optional[int] = next((fid for fid in file_ids if in_progress(fid)), None)
    if next_unread is None and last_read is not None:
        after = file_ids[file_ids.index(last_read.file_id) + 1:]
        next_unread = next((fid for fid in after if not is_read(fid)), None)
    if next_unread is None:
        next_unread = next((fid for fid in file_ids if not is_read(fid)), None)

    progress = session.exec(
        select(SeriesProgress).where(SeriesProgress.series_id == series_id)
    ).first()
    if progress is None:
        progress = SeriesProgress(series_id=series_id)

    progress.total_owned = len(files)
    progress.total_read = sum(1 for fid in file_ids if is_read(fid))
    progress.total_in_progress = sum(1 for fid in file_ids if in_progress(fid))
    progress.last_read_file_id = last_read.file_id if last_read else None
    progress.last_read_at = last_read.last_read_at if last_read else None
    progress.next_unread_file_id = next_unread
    progress.updated_at = datetime.now(timezone.utc)
    session.add(progress)
    session.flush()
    return progress
