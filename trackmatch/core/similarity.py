"""Edit distance and similarity ratio between canonical strings."""

from __future__ import annotations

from rapidfuzz.distance import Levenshtein


def edit_distance(a: str, b: str) -> int:
    """Return the Levenshtein distance with unit insert/delete/substitute costs."""

    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """Return ``1 - distance / max_len`` in ``[0, 1]``."""

    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


__all__ = ["edit_distance", "similarity"]
