"""Filesystem discovery for library scans.

Walks a library root and lists supported comic archives with their size and
mtime. Fingerprints are not computed here; the planner computes them only for
files whose path is unknown to the catalog.
"""

from __future__ import annotations

import dataclasses
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .config import ScannerConfig
from .logging_config import get_logger
from .path_utils import folder_of, to_relative
from .sidecar import SIDECAR_FILENAME, SeriesSidecar, read_series_json

logger = get_logger(__name__)


@dataclasses.dataclass
class DiscoveredFile:
    path: Path
    relative_path: str
    filename: str
    extension: str
    size: int
    modified_at: datetime
    fingerprint: Optional[str] = None

    @property
    def folder_path(self) -> str:
        return folder_of(self.relative_path)


@dataclasses.dataclass
class ScanError:
    path: str
    error: str


@dataclasses.dataclass
class DiscoveryResult:
    files: List[DiscoveredFile] = dataclasses.field(default_factory=list)
    errors: List[ScanError] = dataclasses.field(default_factory=list)
    # relative folder path ("" for the root) -> sidecar
    sidecars: Dict[str, SeriesSidecar] = dataclasses.field(default_factory=dict)


def should_ignore(name: str, ignore_patterns: Iterable[str]) -> bool:
    """Hidden entries (including macOS ._ files) and configured names are skipped."""
    return name.startswith(".") or name in ignore_patterns


def is_comic_file(name: str, extensions: Iterable[str]) -> bool:
    return Path(name).suffix.lower() in extensions


def stat_file(path: Path, root: Path) -> DiscoveredFile:
    """Build a DiscoveredFile from a stat call. Raises OSError."""
    st = path.stat()
    return DiscoveredFile(
        path=path,
        relative_path=to_relative(path, root),
        filename=path.name,
        extension=path.suffix.lower().lstrip("."),
        size=st.st_size,
        modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
    )


def discover_files(root: Path, scanner: ScannerConfig) -> DiscoveryResult:
    """Recursively collect comic archives under `root`.

    Unreadable directories, files that fail to stat and broken sidecars are
    recorded in `errors`; the walk carries on past them.
    """
    root = root.resolve()
    result = DiscoveryResult()
    ignore_patterns = tuple(scanner.ignore_patterns)
    extensions = scanner.extensions

    def on_error(exc: OSError) -> None:
        logger.warning(f"Cannot read directory {exc.filename}: {exc.strerror}")
        result.errors.append(ScanError(path=str(exc.filename), error=str(exc)))

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        dir_path = Path(dirpath)

        # Prune in-place so os.walk doesn't descend into ignored directories
        dirnames[:] = sorted(d for d in dirnames if not should_ignore(d, ignore_patterns))

        if scanner.load_series_json and SIDECAR_FILENAME in filenames:
            try:
                sidecar = read_series_json(dir_path)
            except (OSError, ValueError) as exc:
                logger.warning(f"Invalid {SIDECAR_FILENAME} in {dir_path}: {exc}")
                result.errors.append(
                    ScanError(path=str(dir_path / SIDECAR_FILENAME), error=str(exc))
                )
            else:
                if sidecar is not None:
                    result.sidecars[to_relative(dir_path, root)] = sidecar
                    logger.debug(f"Found {SIDECAR_FILENAME} in {dir_path}")

        for name in sorted(filenames):
            if should_ignore(name, ignore_patterns) or not is_comic_file(name, extensions):
                continue
            file_path = dir_path / name
            try:
                result.files.append(stat_file(file_path, root))
            except OSError as exc:
                logger.warning(f"Unable to stat {file_path}: {exc}")
                result.errors.append(ScanError(path=str(file_path), error=str(exc)))

    logger.debug(
        f"Discovered {len(result.files)} files under {root} "
        f"({len(result.errors)} errors, {len(result.sidecars)} sidecars)"
    )
    return result
