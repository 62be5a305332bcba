"""Folder-scoped series registry built from series.json sidecars.

The registry lives for one scan. When a file's folder declares its series,
the auto-linker asks the registry before searching the whole library.
"""

from __future__ import annotations

import dataclasses
from typing import Dict, List, Mapping, Optional

from .logging_config import get_logger
from .sidecar import SeriesDefinition, SeriesSidecar
from .similarity import normalize_name, similarity

logger = get_logger(__name__)


@dataclasses.dataclass
class FolderSeriesEntry:
    folder_path: str
    definition: SeriesDefinition
    normalized_name: str
    normalized_aliases: List[str]


@dataclasses.dataclass
class FolderMatch:
    entry: Optional[FolderSeriesEntry]
    confidence: float
    # exact-name, exact-alias, fuzzy-name, fuzzy-alias or none
    match_type: str
    alternates: List[FolderSeriesEntry] = dataclasses.field(default_factory=list)


def _no_match() -> FolderMatch:
    return FolderMatch(entry=None, confidence=0.0, match_type="none")


class FolderSeriesRegistry:
    """Series definitions keyed by relative folder path ("" for the root)."""

    def __init__(self, fuzzy_threshold: float = 0.8):
        self.fuzzy_threshold = fuzzy_threshold
        self._entries: Dict[str, List[FolderSeriesEntry]] = {}

    @classmethod
    def from_sidecars(
        cls, sidecars: Mapping[str, SeriesSidecar], fuzzy_threshold: float = 0.8
    ) -> "FolderSeriesRegistry":
        registry = cls(fuzzy_threshold)
        for folder_path, sidecar in sidecars.items():
            definitions = sidecar.definitions()
            if not definitions:
                continue
            registry._entries[folder_path] = [
                FolderSeriesEntry(
                    folder_path=folder_path,
                    definition=definition,
                    normalized_name=normalize_name(definition.name),
                    normalized_aliases=[
                        a for a in (normalize_name(alias) for alias in definition.aliases) if a
                    ],
                )
                for definition in definitions
            ]
            logger.debug(
                f"Registered {len(definitions)} series for folder '{folder_path}': "
                f"{', '.join(d.name for d in definitions)}"
            )
        return registry

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    def has_folder(self, folder_path: str) -> bool:
        return folder_path in self._entries

    def entries_for(self, folder_path: str) -> List[FolderSeriesEntry]:
        return list(self._entries.get(folder_path, []))

    def find_in_folder(self, folder_path: str, series_name: str) -> FolderMatch:
        """Match a name against the definitions of one folder.

        Tries exact name, then exact alias, then fuzzy similarity at or above
        the registry's threshold.
        """
        entries = self._entries.get(folder_path)
        if not entries:
            return _no_match()

        normalized = normalize_name(series_name)

        for entry in entries:
            if entry.normalized_name == normalized:
                return FolderMatch(entry=entry, confidence=1.0, match_type="exact-name")

        for entry in entries:
            if normalized in entry.normalized_aliases:
                logger.debug(f"'{series_name}' matched alias of {entry.definition.name}")
                return FolderMatch(entry=entry, confidence=1.0, match_type="exact-alias")

        best: Optional[FolderSeriesEntry] = None
        best_score = 0.0
        best_type = "fuzzy-name"
        alternates: List[FolderSeriesEntry] = []
        for entry in entries:
            name_score = similarity(normalized, entry.normalized_name)
            alias_score = max(
                (similarity(normalized, alias) for alias in entry.normalized_aliases),
                default=0.0,
            )
            score = max(name_score, alias_score)
            if score < self.fuzzy_threshold:
                continue
            if score > best_score:
                if best is not None:
                    alternates.append(best)
                best, best_score = entry, score
                best_type = "fuzzy-name" if name_score >= alias_score else "fuzzy-alias"
            else:
                alternates.append(entry)

        if best is None:
            return _no_match()
        if alternates:
            logger.warning(
                f"Ambiguous series match in folder '{folder_path}' for '{series_name}': "
                f"{best.definition.name} ({best_score:.2f}) over "
                f"{', '.join(a.definition.name for a in alternates)}"
            )
        return FolderMatch(
            entry=best, confidence=best_score, match_type=best_type, alternates=alternates
        )
