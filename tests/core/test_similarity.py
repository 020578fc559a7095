import pytest

from trackmatch.core.similarity import edit_distance, similarity


@pytest.mark.parametrize(
    ("a", "b", "distance"),
    [
        ("kitten", "sitting", 3),
        ("flaw", "lawn", 2),
        ("", "abc", 3),
        ("abc", "", 3),
        ("same", "same", 0),
        ("abc", "abd", 1),
    ],
)
def test_edit_distance(a: str, b: str, distance: int) -> None:
    assert edit_distance(a, b) == distance


def test_edit_distance_is_symmetric() -> None:
    assert edit_distance("yesterday", "yestrday") == edit_distance("yestrday", "yesterday") == 1


def test_similarity_bounds() -> None:
    assert similarity("abc", "abc") == 1.0
    assert similarity("", "") == 1.0
    assert similarity("", "abc") == 0.0
    assert similarity("abc", "xyz") == 0.0


def test_similarity_uses_longest_length() -> None:
    assert similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)
    assert similarity("colour", "color") == pytest.approx(1 - 1 / 6)
