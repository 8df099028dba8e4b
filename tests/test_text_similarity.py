import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from text_similarity import find_best_match, similarity
from transcript import Transcript


def _words(text: str):
    return Transcript.from_tuples((i * 100, i * 100 + 90, w) for i, w in enumerate(text.split())).fragments


def test_similarity_identities():
    assert similarity("same text", "same text") == 1.0
    assert similarity("text", "") == 0.0
    assert similarity("", "") == 1.0


def test_similarity_ratio():
    assert similarity("abc", "abd") == pytest.approx(4 / 6)


def test_find_best_match_exact_window():
    words = _words("the quick brown fox jumps over the lazy dog")
    match = find_best_match("jumps over the lazy dog", words, 0)

    assert match is not None
    assert match.position == 4
    assert match.window_size == 5
    assert match.similarity == 1.0


def test_find_best_match_respects_start_index():
    words = _words("go now and go now again")
    match = find_best_match("go now", words, 2)
    assert match.position == 3


def test_find_best_match_handles_glued_punctuation():
    words = Transcript.from_tuples([(0, 1, "Hello"), (1, 2, "world"), (2, 3, "."), (3, 4, "Next")]).fragments
    match = find_best_match("Hello world.", words, 0)
    assert (match.position, match.window_size, match.similarity) == (0, 3, 1.0)


def test_find_best_match_returns_none_below_threshold():
    words = _words("the quick brown fox")
    assert find_best_match("0000 1111", words, 0) is None
    assert find_best_match("the quick", words, 10) is None
