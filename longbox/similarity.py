"""Series name normalization and similarity scoring."""

from __future__ import annotations

import re

_LEADING_THE = re.compile(r"^the\s+", re.IGNORECASE)
_TRAILING_PARENS = re.compile(r"\s*\([^)]+\)\s*$")
_TRAILING_VOLUME = re.compile(r"\s*vol(?:ume)?\.?\s*\d+\s*$", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


def normalize_name(name: str) -> str:
    """Lower-case a series name and strip decorations that vary between sources.

    Example:
        >>> normalize_name("The Amazing Spider-Man (2018) Vol. 2")
        "amazing spiderman 2018"
    """
    value = name.lower().strip()
    value = _LEADING_THE.sub("", value)
    value = _TRAILING_PARENS.sub("", value)
    value = _TRAILING_VOLUME.sub("", value)
    value = _WHITESPACE.sub(" ", value)
    return _PUNCTUATION.sub("", value)


def similarity(a: str, b: str) -> float:
    """Score two already-normalized names between 0 and 1.

    Counts the shared prefix, the shared suffix and the length of every
    common word longer than two characters, relative to the longer name.
    """
    if a == b:
        return 1.0
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    min_len = min(len(a), len(b))

    prefix = 0
    while prefix < min_len and a[prefix] == b[prefix]:
        prefix += 1

    suffix = 0
    while suffix < min_len - prefix and a[-1 - suffix] == b[-1 - suffix]:
        suffix += 1

    matches = prefix + suffix
    words_b = set(b.split(" "))
    for word in a.split(" "):
        if len(word) > 2 and word in words_b:
            matches += len(word)

    return min(1.0, matches / max_len)


def name_similarity(a: str, b: str) -> float:
    return similarity(normalize_name(a), normalize_name(b))
