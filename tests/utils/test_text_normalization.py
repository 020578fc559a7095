import pytest

from trackmatch.utils.text_normalization import normalize, normalize_cached, strip_accents


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Café del Mar", "cafe del mar"),
        ("Beyoncé", "beyonce"),
        ("Motörhead", "motorhead"),
        ("Don't Stop Me Now", "dont stop me now"),
        ("Don’t Stop Me Now", "dont stop me now"),
        ("AC/DC", "ac dc"),
        ("  Hello,   World!  ", "hello world"),
        ("Sigur Rós – Hoppípolla", "sigur ros hoppipolla"),
        ("snake_case", "snake case"),
    ],
)
def test_normalize_canonical_forms(raw: str, expected: str) -> None:
    assert normalize(raw) == expected


def test_normalize_transliterates_letters_without_decomposition() -> None:
    assert normalize("Ørsted") == "orsted"
    assert normalize("Straße") == "strasse"


def test_normalize_transliterates_non_latin_scripts() -> None:
    assert normalize("Кино") == "kino"


def test_normalize_empty_and_punctuation_only() -> None:
    assert normalize("") == ""
    assert normalize("!!! ???") == ""


def test_normalize_is_idempotent() -> None:
    for raw in ["Mötley Crüe", "Guns N' Roses", "P!nk", "Sigur Rós"]:
        once = normalize(raw)
        assert normalize(once) == once


def test_normalize_cached_matches_uncached() -> None:
    assert normalize_cached("Émilie Simon") == normalize("Émilie Simon") == "emilie simon"


def test_strip_accents_keeps_base_letters() -> None:
    assert strip_accents("àéîõü") == "aeiou"
