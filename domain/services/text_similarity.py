from __future__ import annotations

from collections.abc import Callable

from rapidfuzz import fuzz

SimilarityScorer = Callable[[str, str], float]


def fuzzy_ratio(first: str, second: str) -> float:
    """Normalized Indel similarity in [0, 1], whitespace ignored.

    Strings that are equal once whitespace is removed (including two empty strings)
    score 1.0.
    """
    left = "".join(first.split())
    right = "".join(second.split())
    if left == right:
        return 1.0
    return fuzz.ratio(left, right) / 100.0
