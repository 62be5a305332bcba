"""Series identity matching and file auto-linking.

Resolving a proposed series name walks a confidence ladder:

1. exact: same name and publisher (and start year when one is known), 1.0
2. partial: same name and start year, publisher ignored, 0.9
3. fuzzy: normalized similarity against names and aliases of active series,
   boosted by a matching year (+0.1) or publisher (+0.05)
4. none

The matcher itself never raises for a missing match; auto-linking returns a
LinkResult the caller branches on.
"""

from __future__ import annotations

import dataclasses
from typing import List, Optional

from sqlmodel import Session

from .config import LongboxConfig, MatchingConfig
from .covers import recalculate_series_cover
from .errors import ConflictError, NotFoundError
from .logging_config import get_logger
from .models import ComicFile, Series
from .path_utils import folder_name, folder_of
from .registry import FolderSeriesRegistry
from .series import (
    create_series,
    find_or_create_from_definition,
    get_active_series,
    get_series,
    get_series_by_identity,
    get_series_by_name_and_year,
    restore_series,
    update_series_progress,
)
from .similarity import normalize_name, similarity

logger = get_logger(__name__)

EXACT_CONFIDENCE = 1.0
PARTIAL_CONFIDENCE = 0.9
YEAR_BOOST = 0.1
PUBLISHER_BOOST = 0.05
ALTERNATE_WEIGHT = 0.8
FOLDER_NAME_WEIGHT = 0.7


@dataclasses.dataclass
class MatchCandidate:
    series: Series
    confidence: float


@dataclasses.dataclass
class MatchResult:
    # exact, partial, fuzzy or none
    match_type: str
    series: Optional[Series]
    confidence: float
    candidates: List[MatchCandidate] = dataclasses.field(default_factory=list)
    ambiguous: bool = False


@dataclasses.dataclass
class Suggestion:
    series_id: int
    series_name: str
    confidence: float
    reason: str


@dataclasses.dataclass
class LinkResult:
    success: bool
    match_type: str
    series_id: Optional[int] = None
    confidence: float = 0.0
    suggestions: List[Suggestion] = dataclasses.field(default_factory=list)
    error: Optional[str] = None
    needs_confirmation: bool = False


def _fuzzy_score(
    normalized: str, series: Series, year: Optional[int], publisher: Optional[str]
) -> float:
    score = max(
        similarity(normalized, normalize_name(candidate))
        for candidate in [series.name] + series.alias_list
    )
    if year is not None and series.start_year == year:
        score += YEAR_BOOST
    if publisher and series.publisher and series.publisher.lower() == publisher.lower():
        score += PUBLISHER_BOOST
    return min(1.0, score)


def find_matching_series(
    session: Session,
    name: str,
    year: Optional[int] = None,
    publisher: Optional[str] = None,
    matching: Optional[MatchingConfig] = None,
) -> MatchResult:
    """Run the confidence ladder for one proposed series name."""
    matching = matching or MatchingConfig()

    exact = get_series_by_identity(session, name, publisher, year=year)
    if exact is not None:
        return MatchResult("exact", exact, EXACT_CONFIDENCE, [MatchCandidate(exact, EXACT_CONFIDENCE)])

    if year is not None:
        partial = get_series_by_name_and_year(session, name, year)
        if partial is not None:
            return MatchResult(
                "partial", partial, PARTIAL_CONFIDENCE, [MatchCandidate(partial, PARTIAL_CONFIDENCE)]
            )

    normalized = normalize_name(name)
    candidates = []
    for series in get_active_series(session):
        score = _fuzzy_score(normalized, series, year, publisher)
        if score > matching.fuzzy_threshold:
            candidates.append(MatchCandidate(series, score))
    if not candidates:
        return MatchResult("none", None, 0.0)

    candidates.sort(key=lambda c: (-c.confidence, c.series.id))
    top = candidates[0]
    ambiguous = (
        len(candidates) > 1
        and candidates[1].confidence >= matching.ambiguity_ratio * top.confidence
    )
    return MatchResult("fuzzy", top.series, top.confidence, candidates, ambiguous)


# --- Linking ---


def _get_file(session: Session, file_id: int) -> ComicFile:
    file = session.get(ComicFile, file_id)
    if file is None:
        raise NotFoundError("file", file_id)
    return file


def _refresh_cover(session: Session, series_id: int, config: LongboxConfig) -> None:
    try:
        recalculate_series_cover(session, series_id, config)
    except Exception as exc:
        logger.error(f"Cover update failed for series {series_id}: {exc}")


def link_file_to_series(
    session: Session, file_id: int, series_id: int, config: LongboxConfig
) -> None:
    """Point a file at a series, restoring the series first if it is archived."""
    file = _get_file(session, file_id)
    series = get_series(session, series_id)
    restore_series(session, series)

    previous = file.series_id
    file.series_id = series.id
    session.add(file)
    session.flush()

    update_series_progress(session, series.id)
    _refresh_cover(session, series.id, config)
    if previous is not None and previous != series.id:
        update_series_progress(session, previous)
        _refresh_cover(session, previous, config)


def unlink_file_from_series(
    session: Session, file_id: int, config: LongboxConfig
) -> Optional[int]:
    """Detach a file from its series. Returns the former series id, if any."""
    file = _get_file(session, file_id)
    previous = file.series_id
    if previous is None:
        return None

    file.series_id = None
    session.add(file)
    session.flush()
    update_series_progress(session, previous)
    _refresh_cover(session, previous, config)
    return previous


def _candidate_name(file: ComicFile) -> Optional[str]:
    meta = file.metadata_rel
    if meta is not None and meta.series and meta.series.strip():
        return meta.series.strip()
    return folder_name(folder_of(file.relative_path)) or None


def _create_and_link(
    session: Session,
    file: ComicFile,
    name: str,
    year: Optional[int],
    publisher: Optional[str],
    config: LongboxConfig,
) -> LinkResult:
    try:
        series = create_series(
            session,
            name,
            start_year=year,
            publisher=publisher,
            primary_folder=folder_of(file.relative_path) or None,
        )
    except ConflictError:
        # Same name and publisher under another start year, or archived
        series = get_series_by_identity(session, name, publisher)
        if series is None:
            raise
        link_file_to_series(session, file.id, series.id, config)
        return LinkResult(True, "exact", series.id, EXACT_CONFIDENCE)

    link_file_to_series(session, file.id, series.id, config)
    return LinkResult(True, "created", series.id, EXACT_CONFIDENCE)


def auto_link_file_to_series(
    session: Session,
    file_id: int,
    config: LongboxConfig,
    registry: Optional[FolderSeriesRegistry] = None,
    trust_metadata: bool = False,
) -> LinkResult:
    """Resolve a file to a series and link it when the match is good enough.

    The candidate name comes from cached ComicInfo metadata, falling back to
    the enclosing folder name. A folder registry, when given, is consulted
    before the library-wide ladder. With `trust_metadata` the fuzzy tier is
    skipped: the file goes to the series of that exact name, created if
    needed. Raises NotFoundError for an unknown file id.
    """
    file = _get_file(session, file_id)
    name = _candidate_name(file)
    if not name:
        return LinkResult(False, "no-name", error="No series name found")

    meta = file.metadata_rel
    year = meta.year if meta is not None else None
    publisher = meta.publisher if meta is not None else None
    folder_path = folder_of(file.relative_path)

    if registry is not None:
        folder_match = registry.find_in_folder(folder_path, name)
        if (
            folder_match.entry is not None
            and folder_match.confidence >= config.matching.folder_match_threshold
        ):
            series, created = find_or_create_from_definition(
                session, folder_match.entry.definition, folder_path
            )
            link_file_to_series(session, file.id, series.id, config)
            logger.debug(
                f"{file.filename} -> '{series.name}' via {folder_path or 'root'} "
                f"series.json ({folder_match.match_type})"
            )
            return LinkResult(
                True,
                "created" if created else f"folder-{folder_match.match_type}",
                series.id,
                folder_match.confidence,
            )

    if trust_metadata:
        series = get_series_by_identity(session, name, publisher)
        if series is None:
            return _create_and_link(session, file, name, year, publisher, config)
        link_file_to_series(session, file.id, series.id, config)
        return LinkResult(True, "exact", series.id, EXACT_CONFIDENCE)

    match = find_matching_series(session, name, year, publisher, config.matching)

    if match.match_type in ("exact", "partial"):
        link_file_to_series(session, file.id, match.series.id, config)
        return LinkResult(True, match.match_type, match.series.id, match.confidence)

    if match.match_type == "fuzzy":
        if match.confidence >= config.matching.auto_link_threshold and not match.ambiguous:
            link_file_to_series(session, file.id, match.series.id, config)
            return LinkResult(True, "fuzzy", match.series.id, match.confidence)

        logger.info(
            f"{file.filename}: '{name}' needs confirmation "
            f"({len(match.candidates)} candidates, top {match.confidence:.2f})"
        )
        return LinkResult(
            False,
            "fuzzy",
            confidence=match.confidence,
            suggestions=[
                Suggestion(c.series.id, c.series.name, c.confidence, f'Similar to "{name}"')
                for c in match.candidates
            ],
            needs_confirmation=True,
        )

    return _create_and_link(session, file, name, year, publisher, config)


def suggest_series_for_file(
    session: Session, file_id: int, config: LongboxConfig
) -> List[Suggestion]:
    """Rank candidate series for a file without linking it.

    Uses the ComicInfo series name (with lower-weighted alternates) and the
    enclosing folder name.
    """
    file = _get_file(session, file_id)
    meta = file.metadata_rel
    suggestions: List[Suggestion] = []

    meta_name = meta.series.strip() if meta is not None and meta.series else None
    if meta_name:
        match = find_matching_series(session, meta_name, meta.year, meta.publisher, config.matching)
        if match.series is not None:
            suggestions.append(
                Suggestion(
                    match.series.id,
                    match.series.name,
                    match.confidence,
                    f'Matched from ComicInfo.xml series: "{meta_name}"',
                )
            )
            for alternate in match.candidates[1:]:
                suggestions.append(
                    Suggestion(
                        alternate.series.id,
                        alternate.series.name,
                        match.confidence * ALTERNATE_WEIGHT,
                        "Alternative match",
                    )
                )

    folder = folder_name(folder_of(file.relative_path))
    if folder and folder != meta_name:
        match = find_matching_series(session, folder, matching=config.matching)
        seen = {s.series_id for s in suggestions}
        if match.series is not None and match.series.id not in seen:
            suggestions.append(
                Suggestion(
                    match.series.id,
                    match.series.name,
                    match.confidence * FOLDER_NAME_WEIGHT,
                    f'Matched from folder name: "{folder}"',
                )
            )

    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions
