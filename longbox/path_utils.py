"""Path utilities for the catalog and the folder tree.

Catalog rows store paths relative to the library root, always with forward
slashes. Folder paths use the same form; the library root itself is the
empty string and never gets a folder row.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import List, Optional


def to_relative(absolute_path: Path, library_root: Path) -> str:
    """Convert an absolute path to a relative POSIX path string.

    Example:
        >>> to_relative(Path("/library/Comics/Marvel/X-Men.cbz"), Path("/library/Comics"))
        "Marvel/X-Men.cbz"
    """
    try:
        rel_path = absolute_path.relative_to(library_root)
    except ValueError:
        return absolute_path.as_posix()
    posix = rel_path.as_posix()
    return "" if posix == "." else posix


def to_absolute(relative_path: str, library_root: Path) -> Path:
    """Convert a relative path string to an absolute Path object.

    Example:
        >>> to_absolute("Marvel/X-Men.cbz", Path("/library/Comics"))
        Path("/library/Comics/Marvel/X-Men.cbz")
    """
    return library_root / PurePosixPath(relative_path)


def folder_of(relative_file_path: str) -> str:
    """Return the folder path holding a file ("" for files at the root)."""
    parent = PurePosixPath(relative_file_path).parent.as_posix()
    return "" if parent == "." else parent


def folder_depth(path: str) -> int:
    """Segment count minus one; root-adjacent folders sit at depth 0."""
    if not path:
        return -1
    return path.count("/")


def parent_path(path: str) -> Optional[str]:
    if not path or "/" not in path:
        return None
    return path.rsplit("/", 1)[0]


def folder_name(path: str) -> str:
    return path.rsplit("/", 1)[-1] if path else ""


def ancestor_paths(path: str) -> List[str]:
    """Ancestor folder paths ordered from the root down to the immediate parent.

    Example:
        >>> ancestor_paths("X/Y/Z")
        ["X", "X/Y"]
    """
    if not path:
        return []
    parts = path.split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts))]


def replace_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    """Swap a leading folder prefix; `path` must equal or sit under `old_prefix`."""
    if path == old_prefix:
        return new_prefix
    return new_prefix + path[len(old_prefix):]
