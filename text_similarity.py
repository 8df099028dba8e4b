"""Block-matching similarity and sliding-window sentence lookup."""

import difflib
from dataclasses import dataclass
from typing import Sequence

from transcript import Fragment, join_fragment_texts

DEFAULT_MAX_SHIFT = 30
DEFAULT_THRESHOLD = 0.5


@dataclass(frozen=True)
class Match:
    position: int
    window_size: int
    similarity: float


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def similarity(a: str, b: str) -> float:
    """Ratcliff/Obershelp ratio 2*M/(|a|+|b|) over recursively found longest common blocks."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return difflib.SequenceMatcher(None, a, b, autojunk=False).ratio()


def find_best_match(
    sentence: str,
    fragments: Sequence[Fragment],
    start_index: int,
    max_shift: int = DEFAULT_MAX_SHIFT,
    threshold: float = DEFAULT_THRESHOLD,
) -> Match | None:
    """
    Locate the contiguous run of fragments that best matches `sentence`.

    Window sizes are tried closest-first to the sentence's word count, each
    from `start_index` up to `start_index + max_shift`. A perfect score stops
    the search immediately.
    """
    target = normalize_whitespace(sentence)
    word_count = len(target.split())
    remaining = len(fragments) - start_index
    if word_count == 0 or remaining <= 0:
        return None

    min_window = max(1, word_count // 2)
    max_window = min(word_count * 2, remaining)
    window_sizes = sorted(range(min_window, max_window + 1), key=lambda size: abs(size - word_count))

    best_ratio = 0.0
    best: Match | None = None

    for window_size in window_sizes:
        last_start = min(start_index + max_shift, len(fragments) - window_size)
        for start in range(start_index, last_start + 1):
            window_text = join_fragment_texts(f.text for f in fragments[start:start + window_size])
            ratio = similarity(target, normalize_whitespace(window_text))
            if ratio > best_ratio:
                best_ratio = ratio
                best = Match(start, window_size, ratio)
            if ratio == 1.0:
                return best

    if best is not None and best_ratio >= threshold:
        return best
    return None
