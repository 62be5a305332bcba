"""SQLModel database models for Longbox."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from .errors import InvalidTransitionError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileStatus(str, Enum):
    PENDING = "pending"
    INDEXED = "indexed"
    ORPHANED = "orphaned"
    QUARANTINED = "quarantined"


FILE_TRANSITIONS: Dict[FileStatus, FrozenSet[FileStatus]] = {
    FileStatus.PENDING: frozenset(
        {FileStatus.INDEXED, FileStatus.ORPHANED, FileStatus.QUARANTINED}
    ),
    FileStatus.INDEXED: frozenset({FileStatus.ORPHANED, FileStatus.QUARANTINED}),
    FileStatus.ORPHANED: frozenset({FileStatus.QUARANTINED}),
    FileStatus.QUARANTINED: frozenset(),
}


class SeriesStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


SERIES_TRANSITIONS: Dict[SeriesStatus, FrozenSet[SeriesStatus]] = {
    SeriesStatus.ACTIVE: frozenset({SeriesStatus.ARCHIVED}),
    SeriesStatus.ARCHIVED: frozenset({SeriesStatus.ACTIVE}),
}


class Library(SQLModel, table=True):
    __tablename__ = "libraries"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    root_path: str = Field(unique=True, index=True)
    folders_backfilled: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def root(self) -> Path:
        return Path(self.root_path)


class Folder(SQLModel, table=True):
    __tablename__ = "folders"
    __table_args__ = (
        UniqueConstraint("library_id", "path", name="uq_folders_library_path"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    library_id: int = Field(foreign_key="libraries.id", index=True)
    path: str = Field(index=True)
    name: str
    depth: int = Field(default=0, index=True)
    parent_id: Optional[int] = Field(default=None, foreign_key="folders.id", index=True)
    file_count: int = 0
    total_files: int = 0
    child_count: int = 0
    last_modified: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def has_children(self) -> bool:
        return self.child_count > 0


class ComicFileBase(SQLModel):
    library_id: int = Field(foreign_key="libraries.id", index=True)
    path: str
    relative_path: str = Field(index=True)
    filename: str
    extension: str
    size: int
    modified_at: datetime
    fingerprint: Optional[str] = Field(default=None, index=True)
    status: FileStatus = Field(default=FileStatus.PENDING, index=True)
    folder_id: Optional[int] = Field(default=None, foreign_key="folders.id", index=True)
    series_id: Optional[int] = Field(default=None, foreign_key="series.id", index=True)


class ComicFile(ComicFileBase, table=True):
    __tablename__ = "files"
    __table_args__ = (
        UniqueConstraint("library_id", "relative_path", name="uq_files_library_path"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    metadata_rel: Optional["FileMetadata"] = Relationship(
        back_populates="file",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
    progress: Optional["ReadingProgress"] = Relationship(
        back_populates="file",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class FileMetadataBase(SQLModel):
    series: Optional[str] = None
    title: Optional[str] = None
    issue_number: Optional[str] = None
    issue_sort: Optional[float] = None
    volume: Optional[int] = None
    publisher: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None
    writer: Optional[str] = None
    penciller: Optional[str] = None
    summary: Optional[str] = None
    genre: Optional[str] = None
    language_iso: Optional[str] = None


class FileMetadata(FileMetadataBase, table=True):
    __tablename__ = "file_metadata"

    id: Optional[int] = Field(default=None, primary_key=True)
    file_id: int = Field(foreign_key="files.id", unique=True)
    extracted_at: datetime = Field(default_factory=_utcnow)

    file: Optional[ComicFile] = Relationship(back_populates="metadata_rel")


class ReadingProgress(SQLModel, table=True):
    __tablename__ = "reading_progress"

    id: Optional[int] = Field(default=None, primary_key=True)
    file_id: int = Field(foreign_key="files.id", unique=True)
    current_page: int = 0
    completed: bool = False
    last_read_at: Optional[datetime] = None

    file: Optional[ComicFile] = Relationship(back_populates="progress")


class Series(SQLModel, table=True):
    __tablename__ = "series"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    aliases: Optional[str] = None  # comma-separated
    start_year: Optional[int] = None
    end_year: Optional[int] = None
    publisher: Optional[str] = None
    comicvine_id: Optional[str] = None
    metron_id: Optional[str] = None
    anilist_id: Optional[str] = None
    mal_id: Optional[str] = None
    primary_folder: Optional[str] = None
    cover_file_id: Optional[int] = None
    status: SeriesStatus = Field(default=SeriesStatus.ACTIVE, index=True)
    archived_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def alias_list(self) -> List[str]:
        if not self.aliases:
            return []
        return [a.strip() for a in self.aliases.split(",") if a.strip()]

    @property
    def is_archived(self) -> bool:
        return self.status == SeriesStatus.ARCHIVED


class SeriesProgress(SQLModel, table=True):
    __tablename__ = "series_progress"

    id: Optional[int] = Field(default=None, primary_key=True)
    series_id: int = Field(foreign_key="series.id", unique=True)
    total_owned: int = 0
    total_read: int = 0
    total_in_progress: int = 0
    last_read_file_id: Optional[int] = None
    next_unread_file_id: Optional[int] = None
    last_read_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_utcnow)


class CollectionItem(SQLModel, table=True):
    __tablename__ = "collection_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    collection: str = Field(index=True)
    file_id: Optional[int] = Field(default=None, foreign_key="files.id", index=True)
    series_id: Optional[int] = Field(default=None, foreign_key="series.id", index=True)
    is_available: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


# --- Status transitions ---


def set_file_status(file: ComicFile, target: FileStatus) -> bool:
    """Move a file to `target` if the transition table allows it.

    Returns False when the file already has that status.
    """
    current = FileStatus(file.status)
    if current == target:
        return False
    if target not in FILE_TRANSITIONS[current]:
        raise InvalidTransitionError(f"file {file.id}", current.value, target.value)
    file.status = target
    file.updated_at = _utcnow()
    return True


def transition_series(series: Series, target: SeriesStatus) -> bool:
    """Archive or restore a series. Returns False when nothing changed."""
    current = SeriesStatus(series.status)
    if current == target:
        return False
    if target not in SERIES_TRANSITIONS[current]:
        raise InvalidTransitionError(f"series {series.id}", current.value, target.value)
    series.status = target
    series.archived_at = _utcnow() if target == SeriesStatus.ARCHIVED else None
    series.updated_at = _utcnow()
    return True
