"""Materialized folder tree for a library.

Every folder row stores its full relative path and depth, plus three counts:

- `file_count`: files sitting directly in the folder
- `total_files`: files in the folder and all of its descendants
- `child_count`: direct child folders

`total_files(F) == file_count(F) + sum(total_files(C) for C in children(F))`
holds after every operation in this module. Helpers flush; callers commit.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, func, select

from .errors import NotFoundError, PreconditionError
from .library import get_library
from .logging_config import get_logger
from .models import ComicFile, Folder
from .path_utils import (
    ancestor_paths,
    folder_depth,
    folder_name,
    folder_of,
    parent_path,
    replace_prefix,
    to_absolute,
)

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclasses.dataclass
class FolderNode:
    id: int
    path: str
    name: str
    depth: int
    file_count: int
    total_files: int
    child_count: int
    children: List["FolderNode"] = dataclasses.field(default_factory=list)

    @classmethod
    def from_folder(cls, folder: Folder) -> "FolderNode":
        return cls(
            id=folder.id,
            path=folder.path,
            name=folder.name,
            depth=folder.depth,
            file_count=folder.file_count,
            total_files=folder.total_files,
            child_count=folder.child_count,
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


# --- Queries ---


def get_folder(session: Session, folder_id: int) -> Folder:
    folder = session.get(Folder, folder_id)
    if folder is None:
        raise NotFoundError("folder", folder_id)
    return folder


def get_folder_by_path(session: Session, library_id: int, path: str) -> Optional[Folder]:
    statement = select(Folder).where(Folder.library_id == library_id, Folder.path == path)
    return session.exec(statement).first()


def get_root_folders(session: Session, library_id: int) -> List[Folder]:
    statement = (
        select(Folder)
        .where(Folder.library_id == library_id, Folder.depth == 0)
        .order_by(Folder.name)
    )
    return list(session.exec(statement).all())


def get_folder_children(session: Session, folder_id: int) -> List[Folder]:
    get_folder(session, folder_id)
    statement = select(Folder).where(Folder.parent_id == folder_id).order_by(Folder.name)
    return list(session.exec(statement).all())


def get_folder_ancestors(session: Session, folder_id: int) -> List[Folder]:
    """Breadcrumbs: ancestors from the top-level folder down to the parent."""
    folder = get_folder(session, folder_id)
    paths = ancestor_paths(folder.path)
    if not paths:
        return []
    statement = (
        select(Folder)
        .where(Folder.library_id == folder.library_id, col(Folder.path).in_(paths))
        .order_by(Folder.depth)
    )
    return list(session.exec(statement).all())


def _descendants(session: Session, folder: Folder) -> List[Folder]:
    """Strict descendants of `folder`, shallowest first."""
    statement = (
        select(Folder)
        .where(
            Folder.library_id == folder.library_id,
            col(Folder.path).startswith(f"{folder.path}/", autoescape=True),
        )
        .order_by(Folder.depth, Folder.path)
    )
    return list(session.exec(statement).all())


def get_folder_tree(session: Session, folder_id: int, max_depth: int = 2) -> FolderNode:
    """Subtree rooted at `folder_id`, at most `max_depth` levels below it."""
    folder = get_folder(session, folder_id)
    root = FolderNode.from_folder(folder)
    nodes: Dict[int, FolderNode] = {folder.id: root}
    for descendant in _descendants(session, folder):
        if descendant.depth - folder.depth > max_depth:
            break
        parent = nodes.get(descendant.parent_id)
        if parent is None:
            continue
        node = FolderNode.from_folder(descendant)
        parent.children.append(node)
        nodes[descendant.id] = node
    for node in nodes.values():
        node.children.sort(key=lambda n: n.name.lower())
    return root


def get_all_folders(
    session: Session, library_id: int, include_empty: bool = True
) -> List[Folder]:
    statement = select(Folder).where(Folder.library_id == library_id)
    if not include_empty:
        statement = statement.where(Folder.total_files > 0)
    return list(session.exec(statement.order_by(Folder.path)).all())


# --- Creation ---


def _adjust_child_count(session: Session, folder_id: int, delta: int) -> None:
    session.exec(
        update(Folder)
        .where(Folder.id == folder_id)
        .values(child_count=col(Folder.child_count) + delta)
    )


def _insert_folder(
    session: Session, library_id: int, path: str, parent_id: Optional[int]
) -> Folder:
    """Insert one folder row unless it exists; bump the parent only on insert."""
    existing = get_folder_by_path(session, library_id, path)
    if existing is not None:
        return existing

    statement = (
        sqlite_insert(Folder.__table__)
        .values(
            library_id=library_id,
            path=path,
            name=folder_name(path),
            depth=folder_depth(path),
            parent_id=parent_id,
            file_count=0,
            total_files=0,
            child_count=0,
            created_at=_now(),
        )
        .on_conflict_do_nothing(index_elements=["library_id", "path"])
    )
    result = session.connection().execute(statement)
    if result.rowcount == 1:
        logger.debug(f"Created folder {path}")
        if parent_id is not None:
            _adjust_child_count(session, parent_id, 1)
    else:
        # Another writer created it between our read and insert
        logger.debug(f"Folder {path} already exists, re-reading")

    folder = get_folder_by_path(session, library_id, path)
    if folder is None:
        raise NotFoundError("folder", path)
    return folder


def ensure_folder_path(session: Session, library_id: int, path: str) -> Folder:
    """Return the folder at `path`, creating it and any missing ancestors.

    Ancestors are created parent-first so every row is inserted with its
    parent id resolved. Calling this twice with the same path returns the
    same row and leaves every count untouched.
    """
    if not path:
        raise PreconditionError("The library root does not have a folder row")
    path = path.strip("/")

    folder = get_folder_by_path(session, library_id, path)
    if folder is not None:
        return folder

    parent_id: Optional[int] = None
    for segment_path in ancestor_paths(path) + [path]:
        folder = _insert_folder(session, library_id, segment_path, parent_id)
        parent_id = folder.id
    return folder


# --- Counts ---


def increment_folder_file_counts(session: Session, folder_id: int, delta: int) -> None:
    """Apply a file add (+1) or remove (-1) at the file's own folder.

    The folder's `file_count` and `total_files` change by `delta`; strict
    ancestors get `total_files` only. Call once per file, at its folder.
    """
    folder = get_folder(session, folder_id)
    if delta == 0:
        return

    session.exec(
        update(Folder)
        .where(Folder.id == folder_id)
        .values(
            file_count=col(Folder.file_count) + delta,
            total_files=col(Folder.total_files) + delta,
            last_modified=_now(),
        )
    )
    ancestors = ancestor_paths(folder.path)
    if ancestors:
        session.exec(
            update(Folder)
            .where(Folder.library_id == folder.library_id, col(Folder.path).in_(ancestors))
            .values(total_files=col(Folder.total_files) + delta)
        )


def _direct_file_counts(session: Session, library_id: int) -> Dict[int, int]:
    statement = (
        select(ComicFile.folder_id, func.count())
        .where(ComicFile.library_id == library_id, col(ComicFile.folder_id).is_not(None))
        .group_by(ComicFile.folder_id)
    )
    return {folder_id: count for folder_id, count in session.exec(statement).all()}


def recalculate_folder_counts(session: Session, folder_id: int) -> Folder:
    """Recompute one folder from the file and folder tables.

    Children's `total_files` are taken as they are stored.
    """
    folder = get_folder(session, folder_id)
    own = session.exec(
        select(func.count()).select_from(ComicFile).where(ComicFile.folder_id == folder_id)
    ).one()
    children = session.exec(select(Folder).where(Folder.parent_id == folder_id)).all()

    folder.file_count = own
    folder.total_files = own + sum(child.total_files for child in children)
    folder.child_count = len(children)
    session.add(folder)
    session.flush()
    return folder


def recalculate_library_counts(
    session: Session, library_id: int, progress: Optional[ProgressCallback] = None
) -> int:
    """Recompute every folder of a library, deepest first.

    Returns the number of folders processed.
    """
    folders = session.exec(
        select(Folder)
        .where(Folder.library_id == library_id)
        .order_by(col(Folder.depth).desc(), Folder.path)
    ).all()
    own_counts = _direct_file_counts(session, library_id)

    # parent id -> (sum of finished child totals, number of children)
    child_totals: Dict[int, int] = {}
    child_counts: Dict[int, int] = {}

    total = len(folders)
    for index, folder in enumerate(folders, start=1):
        own = own_counts.get(folder.id, 0)
        folder.file_count = own
        folder.total_files = own + child_totals.get(folder.id, 0)
        folder.child_count = child_counts.get(folder.id, 0)
        session.add(folder)

        if folder.parent_id is not None:
            child_totals[folder.parent_id] = (
                child_totals.get(folder.parent_id, 0) + folder.total_files
            )
            child_counts[folder.parent_id] = child_counts.get(folder.parent_id, 0) + 1

        if progress is not None:
            progress(index, total)

    session.flush()
    logger.debug(f"Recalculated counts for {total} folders in library {library_id}")
    return total


# --- Mutations ---


def rename_folder(session: Session, folder_id: int, new_name: str) -> Folder:
    """Mirror a directory rename in the catalog.

    The folder keeps its parent; its path and every strict descendant's path
    prefix are rewritten, along with the paths of catalog files below it.
    Only the renamed folder's `name` changes.
    """
    new_name = new_name.strip()
    if not new_name or "/" in new_name or new_name in {".", ".."}:
        raise PreconditionError(f"Invalid folder name: {new_name!r}")

    folder = get_folder(session, folder_id)
    old_path = folder.path
    parent = parent_path(old_path)
    new_path = f"{parent}/{new_name}" if parent else new_name
    if new_path == old_path:
        return folder
    if get_folder_by_path(session, folder.library_id, new_path) is not None:
        raise PreconditionError(f"A folder already exists at {new_path}")

    descendants = _descendants(session, folder)

    folder.path = new_path
    folder.name = new_name
    folder.last_modified = _now()
    session.add(folder)
    for child in descendants:
        child.path = replace_prefix(child.path, old_path, new_path)
        session.add(child)

    library = get_library(session, folder.library_id)
    files = session.exec(
        select(ComicFile).where(
            ComicFile.library_id == folder.library_id,
            col(ComicFile.relative_path).startswith(f"{old_path}/", autoescape=True),
        )
    ).all()
    for file in files:
        file.relative_path = replace_prefix(file.relative_path, old_path, new_path)
        file.path = str(to_absolute(file.relative_path, library.root))
        file.updated_at = _now()
        session.add(file)

    session.flush()
    logger.info(
        f"Renamed folder {old_path} -> {new_path} "
        f"({len(descendants)} subfolders, {len(files)} files)"
    )
    return folder


def delete_folder(session: Session, folder_id: int, force: bool = False) -> int:
    """Delete a folder and its subtree. Returns the number of rows removed.

    A subtree holding files is rejected unless `force` is set; forced
    deletes detach those files from the tree.
    """
    folder = get_folder(session, folder_id)
    subtree = [folder] + _descendants(session, folder)
    subtree_ids = [f.id for f in subtree]

    files = session.exec(select(ComicFile).where(col(ComicFile.folder_id).in_(subtree_ids))).all()
    if files and not force:
        raise PreconditionError(
            f"Folder {folder.path} contains {len(files)} files; use force to delete it"
        )

    for file in files:
        file.folder_id = None
        session.add(file)
    session.flush()

    removed_total = folder.total_files
    ancestors = ancestor_paths(folder.path)
    if removed_total and ancestors:
        session.exec(
            update(Folder)
            .where(Folder.library_id == folder.library_id, col(Folder.path).in_(ancestors))
            .values(total_files=col(Folder.total_files) - removed_total)
        )
    if folder.parent_id is not None:
        _adjust_child_count(session, folder.parent_id, -1)

    for row in sorted(subtree, key=lambda f: f.depth, reverse=True):
        session.delete(row)
        session.flush()

    logger.info(f"Deleted folder {folder.path} ({len(subtree)} folders, {len(files)} files detached)")
    return len(subtree)


def prune_empty_folders(session: Session, library_id: int) -> int:
    """Remove folders with no files below them and no children, deepest first.

    Repeats until no such folder is left, so emptied chains disappear
    entirely. Returns the number of folders removed.
    """
    removed = 0
    while True:
        empty = session.exec(
            select(Folder)
            .where(
                Folder.library_id == library_id,
                Folder.total_files == 0,
                Folder.child_count == 0,
            )
            .order_by(col(Folder.depth).desc())
        ).all()
        if not empty:
            break
        for folder in empty:
            if folder.parent_id is not None:
                _adjust_child_count(session, folder.parent_id, -1)
            logger.debug(f"Pruning empty folder {folder.path}")
            session.delete(folder)
            session.flush()
            removed += 1

    if removed:
        logger.info(f"Pruned {removed} empty folders from library {library_id}")
    return removed


# --- Backfill ---


def backfill_library_folders(session: Session, library_id: int) -> int:
    """Build the folder tree from the stored file paths of a library.

    Creates every folder the files imply, points each file at its folder,
    recalculates all counts and marks the library as backfilled. Returns the
    number of distinct folders the files reference.
    """
    library = get_library(session, library_id)
    files = session.exec(select(ComicFile).where(ComicFile.library_id == library_id)).all()

    paths = sorted({folder_of(f.relative_path) for f in files} - {""}, key=folder_depth)
    resolved: Dict[str, int] = {}
    for path in paths:
        resolved[path] = ensure_folder_path(session, library_id, path).id

    for file in files:
        file.folder_id = resolved.get(folder_of(file.relative_path))
        session.add(file)
    session.flush()

    recalculate_library_counts(session, library_id)
    library.folders_backfilled = True
    session.add(library)
    session.flush()
    logger.info(
        f"Backfilled {len(paths)} folders for {len(files)} files in library '{library.name}'"
    )
    return len(paths)


def ensure_library_ready(session: Session, library_id: int) -> bool:
    """Run the one-time folder backfill if the library still needs it.

    Commits. Returns True when a backfill ran.
    """
    library = get_library(session, library_id)
    if library.folders_backfilled:
        return False
    logger.info(f"Library '{library.name}' predates folder tracking, backfilling")
    backfill_library_folders(session, library_id)
    session.commit()
    return True
