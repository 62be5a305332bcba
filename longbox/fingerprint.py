"""Cheap content fingerprints for move detection.

A fingerprint mixes the file size and whole-second mtime with a SHA-256 of
the first N bytes. Reads are bounded, so habitual rescans of large archives
stay fast. Two different files can collide; callers treat a match as a
likely move, not as proof of identical content.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

DEFAULT_PREFIX_BYTES = 64 * 1024


def compute_fingerprint(path: Path, prefix_bytes: int = DEFAULT_PREFIX_BYTES) -> str:
    """Return `"<size>-<sha256 hex>"` for the file at `path`.

    Raises OSError if the file cannot be read.
    """
    stat = path.stat()
    h = hashlib.sha256()
    h.update(str(stat.st_size).encode("ascii"))
    h.update(b":")
    h.update(str(int(stat.st_mtime)).encode("ascii"))
    h.update(b":")
    with path.open("rb") as handle:
        h.update(handle.read(prefix_bytes))
    return f"{stat.st_size}-{h.hexdigest()}"
