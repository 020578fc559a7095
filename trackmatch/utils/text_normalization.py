"""Canonicalisation of free-text titles and artist names for comparison."""

from __future__ import annotations

from functools import lru_cache
import re
import unicodedata

from unidecode import unidecode

_QUOTES_TRANSLATION = str.maketrans(
    {
        "“": '"',
        "”": '"',
        "„": '"',
        "‟": '"',
        "«": '"',
        "»": '"',
        "‹": '"',
        "›": '"',
        "‘": "'",
        "’": "'",
        "‚": "'",
        "‛": "'",
        "′": "'",
        "‵": "'",
        "ʼ": "'",
    }
)

_APOSTROPHES = re.compile(r"['`]")
_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_quotes(value: str) -> str:
    """Return the provided string with smart quotes converted to ASCII ones."""

    if not value:
        return ""
    return value.translate(_QUOTES_TRANSLATION)


def strip_accents(value: str) -> str:
    """Decompose ``value`` and drop combining marks, keeping base characters."""

    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def normalize(value: str) -> str:
    """Return the canonical comparison form of ``value``.

    The result is lower-case ASCII made of ``[a-z0-9]`` words separated by
    single spaces. Accents are stripped, apostrophes removed without leaving a
    gap ("Don't" becomes "dont") and every other punctuation mark becomes a
    word break. Non-Latin scripts are transliterated so they keep comparable
    content.
    """

    if not value:
        return ""

    working = strip_accents(normalize_quotes(str(value)))
    if not working.isascii():
        working = unidecode(working)
    working = _APOSTROPHES.sub("", working.lower())
    working = _NON_ALPHANUMERIC.sub(" ", working)
    return _WHITESPACE.sub(" ", working).strip()


@lru_cache(maxsize=1024)
def normalize_cached(value: str) -> str:
    return normalize(value)


__all__ = ["normalize", "normalize_cached", "normalize_quotes", "strip_accents"]
