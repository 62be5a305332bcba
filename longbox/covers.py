"""Series cover thumbnails.

A series cover is a JPEG made from the first page of the series' first
issue, stored under `covers/series-<id>.jpg` in the data directory.
"""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Optional

from PIL import Image
from sqlmodel import Session

from .archive import read_first_image
from .config import LongboxConfig
from .logging_config import get_logger
from .series import get_series, series_files_in_order

logger = get_logger(__name__)


def cover_path(config: LongboxConfig, series_id: int) -> Path:
    return config.covers_dir / f"series-{series_id}.jpg"


def _save_thumbnail(img_bytes: bytes, thumb_path: Path, width: int, height: int, quality: int) -> None:
    thumb_path.parent.mkdir(parents=True, exist_ok=True)
    with Image.open(BytesIO(img_bytes)) as im:
        im = im.convert("RGB")
        im.thumbnail((width, height))
        im.save(thumb_path, format="JPEG", quality=quality, optimize=True)


def recalculate_series_cover(
    session: Session, series_id: int, config: LongboxConfig
) -> Optional[int]:
    """Regenerate the cover of a series from its first issue.

    Returns the id of the file the cover was taken from, or None when the
    series has no usable file (the stored cover is then cleared). Archive and
    image errors propagate to the caller.
    """
    series = get_series(session, series_id)
    target = cover_path(config, series_id)

    cover_file_id: Optional[int] = None
    for file in series_files_in_order(session, series_id):
        img_bytes = read_first_image(Path(file.path))
        if img_bytes is None:
            logger.debug(f"No images in {file.filename}, trying next issue")
            continue
        _save_thumbnail(
            img_bytes,
            target,
            config.covers.width,
            config.covers.height,
            config.covers.quality,
        )
        cover_file_id = file.id
        break

    if cover_file_id is None and target.exists():
        target.unlink()

    if series.cover_file_id != cover_file_id:
        series.cover_file_id = cover_file_id
        session.add(series)
        session.flush()
    logger.debug(f"Cover for series '{series.name}' now from file {cover_file_id}")
    return cover_file_id
