"""ComicInfo.xml parsing for Longbox.

Reads ComicInfo.xml from inside CBZ/CBR archives. The parsed <Series> value
is the preferred candidate name for series auto-linking.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .archive import find_member, open_archive
from .logging_config import get_logger

logger = get_logger(__name__)

# ComicInfo tag names (case-insensitive in XML) -> our field names
TAG_MAP = {
    "series": "series",
    "title": "title",
    "number": "issue_number",
    "issue": "issue_number",
    "volume": "volume",
    "publisher": "publisher",
    "year": "year",
    "month": "month",
    "writer": "writer",
    "penciller": "penciller",
    "summary": "summary",
    "genre": "genre",
    "languageiso": "language_iso",
}

INT_FIELDS = {"volume", "year", "month"}


class EmbeddedMetadata(BaseModel):
    """Metadata parsed from ComicInfo.xml (all optional)."""

    model_config = {"extra": "ignore"}

    series: Optional[str] = None
    title: Optional[str] = None
    issue_number: Optional[str] = None
    volume: Optional[int] = None
    publisher: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None
    writer: Optional[str] = None
    penciller: Optional[str] = None
    summary: Optional[str] = None
    genre: Optional[str] = None
    language_iso: Optional[str] = None

    @property
    def issue_sort(self) -> Optional[float]:
        return issue_sort_key(self.issue_number)


def issue_sort_key(issue_number: Optional[str]) -> Optional[float]:
    """Numeric sort value for issue numbers like "12", "1.5" or "7AU"."""
    if not issue_number:
        return None
    match = re.match(r"\s*(-?\d+(?:\.\d+)?)", issue_number)
    if not match:
        return None
    return float(match.group(1))


def _text(elem: Optional[ET.Element]) -> Optional[str]:
    if elem is None or elem.text is None:
        return None
    t = elem.text.strip()
    return t or None


def _int_or_none(s: str) -> Optional[int]:
    try:
        return int(s.strip())
    except ValueError:
        return None


def _local_name(tag: str) -> str:
    """Return tag without namespace (e.g. '{http://...}Issue' -> 'issue')."""
    return tag.split("}")[-1].lower()


def parse_comicinfo_xml(xml_bytes: bytes) -> EmbeddedMetadata:
    """Parse ComicInfo.xml content into a validated Pydantic model."""
    raw: dict[str, object] = {}
    try:
        root = ET.fromstring(xml_bytes)
    except ET.ParseError:
        return EmbeddedMetadata()

    for elem in root:
        key = TAG_MAP.get(_local_name(elem.tag))
        text = _text(elem)
        if key is None or text is None or key in raw:
            continue
        if key in INT_FIELDS:
            val = _int_or_none(text)
            if val is not None:
                raw[key] = val
        else:
            raw[key] = text

    return EmbeddedMetadata.model_validate(raw)


def read_embedded_metadata(archive_path: Path) -> Optional[EmbeddedMetadata]:
    """Read ComicInfo.xml from a comic archive, or None when absent or unreadable."""
    try:
        with open_archive(archive_path) as archive:
            member = find_member(archive, "ComicInfo.xml")
            if member is None:
                return None
            raw = archive.read(member)
    except Exception as exc:
        logger.warning(f"Unable to read ComicInfo.xml from {archive_path.name}: {exc}")
        return None

    if not raw.strip():
        return None
    return parse_comicinfo_xml(raw)
