"""series.json sidecar files.

A folder may carry a `series.json` declaring which series its files belong
to. Two layouts exist:

- v1: a single series described at the top level (`seriesName`, `publisher`, ...)
- v2: a `series` array of definitions, for folders mixing several series
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SIDECAR_FILENAME = "series.json"


class _SidecarModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SeriesDefinition(_SidecarModel):
    name: str
    aliases: List[str] = Field(default_factory=list)
    publisher: Optional[str] = None
    start_year: Optional[int] = None
    end_year: Optional[int] = None
    issue_count: Optional[int] = None
    comicvine_id: Optional[str] = Field(default=None, alias="comicVineSeriesId")
    metron_id: Optional[str] = Field(default=None, alias="metronSeriesId")
    anilist_id: Optional[str] = None
    mal_id: Optional[str] = None

    @field_validator("comicvine_id", "metron_id", "anilist_id", "mal_id", mode="before")
    @classmethod
    def _id_as_text(cls, value: Union[str, int, None]) -> Optional[str]:
        return None if value is None else str(value)


class SeriesSidecar(_SidecarModel):
    # v2
    series: Optional[List[SeriesDefinition]] = None
    # v1
    series_name: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    publisher: Optional[str] = None
    start_year: Optional[int] = None
    end_year: Optional[int] = None
    issue_count: Optional[int] = None
    comicvine_id: Optional[str] = Field(default=None, alias="comicVineSeriesId")
    metron_id: Optional[str] = Field(default=None, alias="metronSeriesId")
    anilist_id: Optional[str] = None
    mal_id: Optional[str] = None

    @field_validator("comicvine_id", "metron_id", "anilist_id", "mal_id", mode="before")
    @classmethod
    def _id_as_text(cls, value: Union[str, int, None]) -> Optional[str]:
        return None if value is None else str(value)

    @property
    def is_multi_series(self) -> bool:
        return self.series is not None

    def definitions(self) -> List[SeriesDefinition]:
        """All series this sidecar declares, whichever layout it uses."""
        if self.series is not None:
            return list(self.series)
        if self.series_name:
            return [
                SeriesDefinition(
                    name=self.series_name,
                    aliases=self.aliases,
                    publisher=self.publisher,
                    start_year=self.start_year,
                    end_year=self.end_year,
                    issue_count=self.issue_count,
                    comicvine_id=self.comicvine_id,
                    metron_id=self.metron_id,
                    anilist_id=self.anilist_id,
                    mal_id=self.mal_id,
                )
            ]
        return []


def parse_series_json(content: str) -> SeriesSidecar:
    """Parse sidecar text. Raises ValueError for malformed or empty definitions."""
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("series.json: top level must be an object")
    if "series" in data and not isinstance(data["series"], list):
        raise ValueError('series.json: "series" field must be an array')
    sidecar = SeriesSidecar.model_validate(data)
    if not sidecar.definitions():
        raise ValueError("series.json: no series defined (need seriesName or series[])")
    return sidecar


def read_series_json(folder: Path) -> Optional[SeriesSidecar]:
    """Load `series.json` from `folder`, or None when the folder has none."""
    path = folder / SIDECAR_FILENAME
    if not path.is_file():
        return None
    return parse_series_json(path.read_text(encoding="utf-8"))
