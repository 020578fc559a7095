"""Fuzzy matching of catalog candidates against free-text queries."""

from __future__ import annotations

from collections.abc import Iterable

from trackmatch.core.similarity import similarity
from trackmatch.core.types import CatalogItem
from trackmatch.utils.text_normalization import normalize_cached

DEFAULT_MATCH_THRESHOLD = 0.8


def fuzzy_match(query: str, candidate: str, threshold: float = DEFAULT_MATCH_THRESHOLD) -> bool:
    """Return ``True`` when ``query`` and ``candidate`` describe the same thing.

    Checks run in order and stop at the first hit: equality after
    normalisation, containment of either string in the other, and finally an
    edit-distance similarity of at least ``threshold``. Catalog titles often
    carry suffixes ("Remastered 2011") and queries are often truncated, which
    is what the containment step absorbs.
    """

    normalized_query = normalize_cached(query or "")
    normalized_candidate = normalize_cached(candidate or "")

    if normalized_query == normalized_candidate:
        return True
    if normalized_query in normalized_candidate or normalized_candidate in normalized_query:
        return True
    return similarity(normalized_query, normalized_candidate) >= threshold


def track_matches(
    title: str,
    artist: str,
    item: CatalogItem,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> bool:
    """Title must match the item name and the artist any credited artist."""

    if not fuzzy_match(title, item.name, threshold):
        return False
    return any(fuzzy_match(artist, name, threshold) for name in item.artist_names)


def select_best_match(
    title: str,
    artist: str,
    items: Iterable[CatalogItem],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> CatalogItem | None:
    """Return the first item, in provider ranking order, that matches."""

    for item in items:
        if track_matches(title, artist, item, threshold):
            return item
    return None


__all__ = [
    "DEFAULT_MATCH_THRESHOLD",
    "fuzzy_match",
    "select_best_match",
    "track_matches",
]
