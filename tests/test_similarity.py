import pytest

from longbox.similarity import name_similarity, normalize_name, similarity


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Saga", "saga"),
        ("The Walking Dead", "walking dead"),
        ("Saga (2012)", "saga"),
        ("Monstress Vol. 3", "monstress"),
        ("The Amazing Spider-Man (2018) Vol. 2", "amazing spiderman 2018"),
        ("  X-Men   Legacy ", "xmen legacy"),
    ],
)
def test_normalize_name(raw, expected):
    assert normalize_name(raw) == expected


def test_identical_names_score_one():
    assert similarity("saga", "saga") == 1.0
    assert similarity("", "") == 1.0
    assert name_similarity("The Saga", "saga (2012)") == 1.0


def test_unrelated_names_score_low():
    assert similarity("batman", "superman") == pytest.approx(3 / 8)
    assert similarity("saga", "hulk") == 0.0


def test_shared_words_raise_the_score():
    assert name_similarity("X-Men", "X-Men Legacy") == pytest.approx(8 / 11)
    assert similarity("batman", "batman beyond") > similarity("batman", "superman")


def test_score_is_capped_at_one():
    assert similarity("spiderman", "spiderman noir") == 1.0
