import json

import pytest

from longbox.registry import FolderSeriesRegistry
from longbox.sidecar import parse_series_json, read_series_json


def test_parse_single_series_layout():
    sidecar = parse_series_json(
        json.dumps(
            {
                "seriesName": "Saga",
                "publisher": "Image",
                "startYear": 2012,
                "aliases": ["Saga Comic"],
                "comicVineSeriesId": 43585,
            }
        )
    )

    assert not sidecar.is_multi_series
    [definition] = sidecar.definitions()
    assert definition.name == "Saga"
    assert definition.publisher == "Image"
    assert definition.start_year == 2012
    assert definition.aliases == ["Saga Comic"]
    assert definition.comicvine_id == "43585"


def test_parse_multi_series_layout():
    sidecar = parse_series_json(
        json.dumps(
            {
                "series": [
                    {"name": "Batman", "startYear": 2011, "publisher": "DC"},
                    {"name": "Detective Comics", "aliases": ["Tec"], "malId": 12},
                ]
            }
        )
    )

    assert sidecar.is_multi_series
    names = [d.name for d in sidecar.definitions()]
    assert names == ["Batman", "Detective Comics"]
    assert sidecar.definitions()[1].mal_id == "12"


@pytest.mark.parametrize(
    "content",
    [
        "{broken",
        "[]",
        json.dumps({"publisher": "Image"}),
        json.dumps({"series": "Batman"}),
        json.dumps({"series": [{"publisher": "DC"}]}),
    ],
)
def test_invalid_sidecars_raise_value_error(content):
    with pytest.raises(ValueError):
        parse_series_json(content)


def test_read_series_json_missing_file(tmp_path):
    assert read_series_json(tmp_path) is None


def _registry(threshold=0.8):
    sidecar = parse_series_json(
        json.dumps(
            {
                "series": [
                    {"name": "Batman", "aliases": ["The Dark Knight"]},
                    {"name": "Detective Comics"},
                ]
            }
        )
    )
    return FolderSeriesRegistry.from_sidecars({"DC/Batman": sidecar}, threshold)


def test_registry_exact_name_and_alias():
    registry = _registry()

    assert len(registry) == 2
    assert registry.has_folder("DC/Batman")
    assert not registry.has_folder("DC")

    by_name = registry.find_in_folder("DC/Batman", "The Batman")
    assert by_name.match_type == "exact-name"
    assert by_name.entry.definition.name == "Batman"
    assert by_name.confidence == 1.0

    by_alias = registry.find_in_folder("DC/Batman", "Dark Knight")
    assert by_alias.match_type == "exact-alias"
    assert by_alias.entry.definition.name == "Batman"


def test_registry_fuzzy_match_respects_threshold():
    registry = _registry(threshold=0.8)

    fuzzy = registry.find_in_folder("DC/Batman", "Detective Comics Annual")
    assert fuzzy.match_type == "fuzzy-name"
    assert fuzzy.entry.definition.name == "Detective Comics"
    assert fuzzy.confidence >= 0.8

    assert registry.find_in_folder("DC/Batman", "Superman").entry is None


def test_registry_unknown_folder_is_no_match():
    match = _registry().find_in_folder("Marvel", "Batman")

    assert match.entry is None
    assert match.match_type == "none"
    assert match.confidence == 0.0
