"""
Transcript model: ordered, time-coded text fragments.

All times are integer milliseconds. A Transcript owns its fragments; every
transformation returns a new Transcript instead of touching the original.
"""

import math
import re
from dataclasses import dataclass, replace
from typing import Iterable, Iterator

# ─────────────────────────────────────────────────────────
#  Tokenization constants
# ─────────────────────────────────────────────────────────
CHARS_PER_PHONEME        = 4
MIN_WORD_DURATION        = 50
MIN_PUNCTUATION_DURATION = 30
WORD_LEVEL_RATIO         = 0.8

PUNCTUATION_CHARS = ".,!?;:…。，！？；：、"

_TOKEN_RE = re.compile(
    # Scripts written as words: one token per run
    r"[a-zA-Z\u00c0-\u00ff\u0100-\u017f']+"
    r"|[\u0400-\u04ff]+"                      # Cyrillic
    r"|[\u0370-\u03ff]+"                      # Greek
    r"|[\u0600-\u06ff]+"                      # Arabic
    r"|[\u0590-\u05ff]+"                      # Hebrew
    r"|\d+"
    # Scripts tokenized per glyph
    r"|[\u4e00-\u9fff]"                       # CJK ideographs
    r"|[\u3040-\u309f]"                       # Hiragana
    r"|[\u30a0-\u30ff]"                       # Katakana
    r"|[\uac00-\ud7af]"                       # Hangul
    r"|[\u0e00-\u0e7f][\u0e30-\u0e3a\u0e47-\u0e4e]*"  # Thai base + marks
    r"|[\u0900-\u097f]"                       # Devanagari
    r"|[\u0980-\u09ff]"                       # Bengali
    r"|[\u0e80-\u0eff]"                       # Lao
    r"|[\u1000-\u109f]"                       # Myanmar
    r"|[" + re.escape(PUNCTUATION_CHARS) + r"]"
)
_ASCII_RE = re.compile(r"^[\x00-\x7f]+$")
_LEADING_PUNCT_RE = re.compile(r"^[^\w\s]")
_CJK_RE = re.compile(r"[\u4e00-\u9fff]")


@dataclass(frozen=True)
class Fragment:
    """One time-coded span of text."""
    ordinal: int
    start_time: int
    end_time: int
    text: str

    def __post_init__(self):
        if self.start_time > self.end_time:
            raise ValueError(
                f"Fragment {self.ordinal}: start_time {self.start_time} > end_time {self.end_time}"
            )

    @property
    def duration(self) -> int:
        return self.end_time - self.start_time


def count_words(text: str) -> int:
    """Whitespace word count; CJK ideographs act as separators."""
    return len(_CJK_RE.sub(" ", text).split())


def is_punctuation_token(token: str) -> bool:
    return len(token) == 1 and token in PUNCTUATION_CHARS


def join_fragment_texts(texts: Iterable[str]) -> str:
    """Join with spaces, gluing punctuation-led pieces onto the previous one."""
    parts: list[str] = []
    for raw in texts:
        text = raw.strip()
        if not text:
            continue
        if parts and _LEADING_PUNCT_RE.match(text):
            parts[-1] += text
        else:
            parts.append(text)
    return " ".join(parts)


class Transcript:
    """Ordered container of Fragments; empty fragments are dropped on construction."""

    def __init__(self, fragments: Iterable[Fragment] = ()):
        kept = [f for f in fragments if f.text and f.text.strip()]
        kept.sort(key=lambda f: f.start_time)
        self._fragments: tuple[Fragment, ...] = tuple(kept)

    @classmethod
    def from_tuples(cls, rows: Iterable[tuple[int, int, str]]) -> "Transcript":
        return cls(Fragment(i + 1, start, end, text) for i, (start, end, text) in enumerate(rows))

    @property
    def fragments(self) -> tuple[Fragment, ...]:
        return self._fragments

    def __len__(self) -> int:
        return len(self._fragments)

    def __iter__(self) -> Iterator[Fragment]:
        return iter(self._fragments)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return Transcript(self._fragments[index])
        return self._fragments[index]

    def __repr__(self) -> str:
        return f"Transcript({len(self._fragments)} fragments)"

    def renumbered(self) -> "Transcript":
        return Transcript(replace(f, ordinal=i + 1) for i, f in enumerate(self._fragments))

    def is_word_level(self) -> bool:
        """True when at least 80% of fragments are a single ASCII token or at most 2 chars."""
        if not self._fragments:
            return False

        valid = 0
        for frag in self._fragments:
            text = frag.text.strip()
            is_ascii_word = len(text.split()) == 1 and bool(_ASCII_RE.match(text))
            if is_ascii_word or len(text) <= 2:
                valid += 1
        return valid / len(self._fragments) >= WORD_LEVEL_RATIO

    def expand_to_words(self) -> "Transcript":
        """Split every fragment into word/glyph tokens with proportionally assigned times."""
        words: list[Fragment] = []

        for frag in self._fragments:
            tokens = _TOKEN_RE.findall(frag.text)
            if not tokens:
                continue

            total_phonemes = sum(_phonemes(t) for t in tokens)
            time_per_phoneme = frag.duration / max(total_phonemes, 1)

            current = float(frag.start_time)
            for token in tokens:
                min_duration = MIN_PUNCTUATION_DURATION if is_punctuation_token(token) else MIN_WORD_DURATION
                token_duration = max(time_per_phoneme * _phonemes(token), min_duration)
                token_end = min(current + token_duration, frag.end_time)
                words.append(Fragment(
                    ordinal=len(words) + 1,
                    start_time=round(current),
                    end_time=round(token_end),
                    text=token,
                ))
                current = token_end

        return Transcript(words)

    def to_text(self) -> str:
        return join_fragment_texts(f.text for f in self._fragments)


def _phonemes(token: str) -> float:
    if is_punctuation_token(token):
        return 0.5
    return math.ceil(len(token) / CHARS_PER_PHONEME)
