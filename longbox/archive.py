"""Archive handling for Longbox.

A unified read-only interface over CBZ (zip) and CBR (rar) archives, used for
ComicInfo.xml extraction and series cover generation.
"""

from __future__ import annotations

import re
import zipfile
from pathlib import Path
from typing import List, Optional, Protocol

import rarfile


IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}


def is_image(filename: str) -> bool:
    name = Path(filename).name
    return not name.startswith(".") and Path(name).suffix.lower() in IMAGE_EXTENSIONS


def natural_key(name: str) -> list:
    """Sort key treating digit runs as numbers ("page2" < "page10")."""
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", name)]


class Archive(Protocol):
    def list_names(self) -> List[str]:
        ...

    def read(self, filename: str) -> bytes:
        ...

    def close(self) -> None:
        ...

    def __enter__(self) -> "Archive":
        ...

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        ...


class ZipArchive:
    def __init__(self, path: Path):
        self._zf = zipfile.ZipFile(path, mode="r")

    def list_names(self) -> List[str]:
        return self._zf.namelist()

    def read(self, filename: str) -> bytes:
        return self._zf.read(filename)

    def close(self) -> None:
        self._zf.close()

    def __enter__(self) -> "ZipArchive":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class RarArchive:
    def __init__(self, path: Path):
        self._rf = rarfile.RarFile(path, mode="r")

    def list_names(self) -> List[str]:
        return self._rf.namelist()

    def read(self, filename: str) -> bytes:
        return self._rf.read(filename)

    def close(self) -> None:
        self._rf.close()

    def __enter__(self) -> "RarArchive":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def open_archive(path: Path) -> Archive:
    """Open an archive, detecting format by extension with fallback.

    Tries the expected format first (cbz→zip, cbr→rar), then the other one
    for misnamed files.
    """
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".cbz":
        primary, fallback = ZipArchive, RarArchive
    elif suffix == ".cbr":
        primary, fallback = RarArchive, ZipArchive
    else:
        raise ValueError(f"Unsupported archive format: {suffix}")

    try:
        return primary(path)
    except (zipfile.BadZipFile, rarfile.Error):
        return fallback(path)


def find_member(archive: Archive, basename: str) -> Optional[str]:
    """Case-insensitive lookup of a member by its base name, anywhere in the archive."""
    wanted = basename.lower()
    return next((n for n in archive.list_names() if Path(n).name.lower() == wanted), None)


def read_first_image(path: Path) -> Optional[bytes]:
    """Bytes of the first page in natural order, or None for an archive without images."""
    with open_archive(path) as archive:
        images = sorted((n for n in archive.list_names() if is_image(n)), key=natural_key)
        if not images:
            return None
        return archive.read(images[0])
