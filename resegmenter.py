"""
LLM-driven sentence resegmentation.

A batch of punctuation-delimited sentences is sent to the split model, which
answers with `<br>`-separated candidates. Each candidate is length-checked
against five tiers and split further by rules or by position when it is too
long. The resulting sentences are then matched back onto the word-level
timestamps, and very short neighbours are merged.
"""

import logging
import math
import re
from dataclasses import dataclass, fields, replace
from typing import Sequence

from cancellation import CancellationToken
from exceptions import AlignmentError, ResegmentError
from llm_client import ChatCompleter
from prompts import SPLIT_TEMPERATURE, SPLIT_USER_PROMPT, build_split_prompt
from settings import TranslatorConfig
from text_similarity import find_best_match
from transcript import Fragment, Transcript, count_words, join_fragment_texts

# ─────────────────────────────────────────────────────────
#  Constants
# ─────────────────────────────────────────────────────────
MAX_GAP_MS             = 1500
SYNTHETIC_DURATION_MS  = 5000
MAX_UNMATCHED          = 5
MATCH_MAX_SHIFT        = 30
MATCH_THRESHOLD        = 0.5
SHORT_MERGE_GAP_MS     = 300
SHORT_MERGE_MIN_WORDS  = 5
LOW_SIMILARITY_WARNING = 0.8

SENTENCE_TERMINATORS = (".", "!", "?", "。", "！", "？", "…")
END_MARKS = (". ", "! ", "? ")

COORDINATING_CONJUNCTIONS  = {"and", "but", "or", "so", "yet", "nor"}
SUBORDINATING_CONJUNCTIONS = {"because", "although", "though", "unless", "since",
                              "while", "whereas", "if", "when", "before", "after"}
RELATIVE_PRONOUNS          = {"that", "which", "who", "whom", "whose", "where", "when", "whether"}
FALLBACK_CONJUNCTIONS      = {"and", "but", "or", "so", "because", "when", "while"}
FALLBACK_SEARCH_RANGE      = 5

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_NEWLINES_RE = re.compile(r"\n+")


@dataclass(frozen=True)
class PreSplitSentence:
    """A punctuation-delimited span over a word-level transcript (end index inclusive)."""
    text: str
    word_start_index: int
    word_end_index: int
    start_time: int
    end_time: int

    @property
    def word_count(self) -> int:
        return self.word_end_index - self.word_start_index + 1


@dataclass
class SplitStats:
    normal: int = 0
    tolerated: int = 0
    optimized: int = 0
    forced: int = 0
    rejected: int = 0

    def __add__(self, other: "SplitStats") -> "SplitStats":
        return SplitStats(**{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)})

    @property
    def total(self) -> int:
        return self.normal + self.tolerated + self.optimized + self.forced + self.rejected


# ─────────────────────────────────────────────────────────
#  Pre-split on punctuation
# ─────────────────────────────────────────────────────────
def _is_decimal_point(words: Sequence[Fragment], index: int) -> bool:
    token = words[index].text.strip()
    if not token.endswith("."):
        return False
    before = token[:-1] or (words[index - 1].text.strip() if index > 0 else "")
    after = words[index + 1].text.strip() if index + 1 < len(words) else ""
    return bool(before) and before[-1].isdigit() and bool(after) and after[0].isdigit()


def presplit_by_punctuation(words: Sequence[Fragment]) -> list[PreSplitSentence]:
    """Cut a word-level transcript into sentences at hard terminators."""
    sentences: list[PreSplitSentence] = []
    start = 0

    def emit(end: int) -> None:
        span = words[start:end + 1]
        sentences.append(PreSplitSentence(
            text=join_fragment_texts(w.text for w in span),
            word_start_index=start,
            word_end_index=end,
            start_time=span[0].start_time,
            end_time=span[-1].end_time,
        ))

    for i, word in enumerate(words):
        token = word.text.strip()
        if token.endswith(SENTENCE_TERMINATORS) and not _is_decimal_point(words, i):
            emit(i)
            start = i + 1

    if start < len(words):
        emit(len(words) - 1)
    return sentences


# ─────────────────────────────────────────────────────────
#  Rule- and position-based splitting
# ─────────────────────────────────────────────────────────
def split_by_end_marks(sentence: str, logger: logging.Logger | None = None) -> list[str]:
    """Split on '. ', '! ', '? ' where the left part has at least three words."""
    log = logger or logging.getLogger(__name__)
    positions: list[int] = []
    for mark in END_MARKS:
        start = 0
        while True:
            pos = sentence.find(mark, start)
            if pos == -1:
                break
            start = pos + 1
            if mark == ". " and pos > 0 and sentence[pos - 1].isdigit():
                continue
            positions.append(pos + 1)

    if not positions:
        return [sentence]

    segments: list[str] = []
    start = 0
    for pos in sorted(positions):
        segment = sentence[start:pos].strip()
        if segment and count_words(segment) >= 3:
            segments.append(segment)
            start = pos

    last = sentence[start:].strip()
    if last:
        if segments and count_words(last) < 2:
            segments[-1] += " " + last
        else:
            segments.append(last)

    if len(segments) > 1:
        log.debug(f"End-mark split produced {len(segments)} parts")
        return segments
    return [sentence]


def _clean_word(word: str) -> str:
    return word.lower().strip(",.!?")


def aggressive_split(text: str, max_words: int, logger: logging.Logger | None = None) -> list[str]:
    """
    Split at the best semantic boundary, recursing on parts still over 1.5x max_words.

    Candidates, by priority: sentence end (10), ';'/':' (9), ',' (8) split after
    the word; coordinating (7), subordinating (6) conjunctions and relative
    pronouns (5) split before it. Ties go to the candidate nearest the middle.
    """
    log = logger or logging.getLogger(__name__)
    words = text.split()
    n = len(words)
    if n <= max_words:
        return [text]

    candidates: list[tuple[int, int]] = []
    for i in range(2, n - 2):
        word = words[i]
        if word.rstrip(",;:").endswith((".", "!", "?")):
            candidates.append((i + 1, 10))
        if word.endswith((";", ":")):
            candidates.append((i + 1, 9))
        if word.endswith(","):
            candidates.append((i + 1, 8))

    for i in range(3, n - 2):
        word = _clean_word(words[i])
        if word in COORDINATING_CONJUNCTIONS:
            candidates.append((i, 7))
        if word in SUBORDINATING_CONJUNCTIONS:
            candidates.append((i, 6))
        if word in RELATIVE_PRONOUNS:
            candidates.append((i, 5))

    if not candidates:
        log.debug(f"No semantic boundary in {n}-word sentence")
        return [text]

    mid = n // 2
    best_pos, priority = min(candidates, key=lambda c: (-c[1], abs(c[0] - mid)))
    first = " ".join(words[:best_pos])
    second = " ".join(words[best_pos:])
    log.debug(f"Rule split at word {best_pos} (priority {priority}): {count_words(first)} + {count_words(second)} words")

    recurse_above = math.floor(max_words * 1.5)
    result: list[str] = []
    for part in (first, second):
        if count_words(part) > recurse_above:
            result.extend(aggressive_split(part, max_words, log))
        else:
            result.append(part)
    return result


def _fallback_score(words: list[str], i: int) -> int:
    prev = words[i - 1].rstrip(",;:")
    if prev.endswith((".", "!", "?")):
        return 10
    if words[i - 1].endswith((",", ";", ":")):
        return 8
    if i < len(words) and words[i].lower() in FALLBACK_CONJUNCTIONS:
        return 6
    return 1


def fallback_split(
    text: str,
    max_words: int,
    warning_threshold: int | None = None,
    logger: logging.Logger | None = None,
) -> list[str]:
    """Cut into ceil(n/max_words) parts near evenly spaced points; always produces a result."""
    log = logger or logging.getLogger(__name__)
    if warning_threshold is None:
        warning_threshold = math.floor(max_words * 1.5)

    words = text.split()
    n = len(words)
    num_segments = math.ceil(n / max_words)
    if num_segments <= 1:
        return [text]

    segment_size = n / num_segments
    cuts: list[int] = []
    for k in range(1, num_segments):
        ideal = math.floor(segment_size * k)
        best_pos, best_score = ideal, 0
        for i in range(max(1, ideal - FALLBACK_SEARCH_RANGE), min(n - 1, ideal + FALLBACK_SEARCH_RANGE) + 1):
            score = _fallback_score(words, i)
            if score > best_score or (score == best_score and abs(i - ideal) < abs(best_pos - ideal)):
                best_pos, best_score = i, score
        cuts.append(best_pos)

    parts: list[str] = []
    start = 0
    for cut in cuts:
        segment = " ".join(words[start:cut])
        if segment:
            parts.append(segment)
        start = max(start, cut)
    last = " ".join(words[start:])
    if last:
        parts.append(last)

    result: list[str] = []
    for part in parts:
        part_words = part.split()
        if len(part_words) > warning_threshold:
            mid = len(part_words) // 2
            result.append(" ".join(part_words[:mid]))
            result.append(" ".join(part_words[mid:]))
        else:
            result.append(part)

    log.debug(f"Position split: {n} words -> {len(result)} parts")
    return result


# ─────────────────────────────────────────────────────────
#  LLM split with five length tiers
# ─────────────────────────────────────────────────────────
def clean_split_response(response: str) -> list[str]:
    text = _THINK_RE.sub("", response)
    text = _NEWLINES_RE.sub("", text)
    return [s.strip() for s in text.split("<br>") if s.strip()]


def _split_oversized(segment: str, config: TranslatorConfig, log: logging.Logger) -> tuple[list[str], bool]:
    """Rule split, then position split for anything still above the max tier. Returns (parts, rule_split_worked)."""
    parts = aggressive_split(segment, config.max_word_count, log)
    if len(parts) == 1:
        return fallback_split(segment, config.max_word_count, config.warning_threshold, log), False

    bounded: list[str] = []
    for part in parts:
        if count_words(part) > config.max_threshold:
            bounded.extend(fallback_split(part, config.max_word_count, config.warning_threshold, log))
        else:
            bounded.append(part)
    return bounded, True


def classify_and_split(
    candidates: Sequence[str],
    config: TranslatorConfig,
    logger: logging.Logger | None = None,
) -> tuple[list[str], SplitStats]:
    log = logger or logging.getLogger(__name__)
    target = config.max_word_count
    tolerance = config.tolerance_threshold
    warning = config.warning_threshold
    maximum = config.max_threshold

    sentences: list[str] = []
    stats = SplitStats()

    for candidate in candidates:
        for segment in split_by_end_marks(candidate, log):
            w = count_words(segment)

            if w <= target:
                sentences.append(segment)
                stats.normal += 1
            elif w <= tolerance:
                sentences.append(segment)
                stats.tolerated += 1
                log.info(f"Slightly long ({w}/{target} words): {segment[:40]}...")
            elif w <= warning:
                parts = aggressive_split(segment, target, log)
                if len(parts) > 1:
                    stats.optimized += 1
                    sentences.extend(parts)
                else:
                    stats.tolerated += 1
                    log.warning(f"No boundary found, keeping {w}-word sentence: {segment[:40]}...")
                    sentences.append(segment)
            else:
                if w <= maximum:
                    log.warning(f"Over warning threshold ({w}/{target} words): {segment[:40]}...")
                else:
                    log.error(f"Over max threshold ({w}/{target} words): {segment[:40]}...")
                parts, rule_split = _split_oversized(segment, config, log)
                if rule_split:
                    stats.optimized += 1
                elif w <= maximum:
                    stats.forced += 1
                else:
                    stats.rejected += 1
                sentences.extend(parts)

    return sentences, stats


async def split_by_llm(
    text: str,
    client: ChatCompleter,
    config: TranslatorConfig,
    batch_index: int | None = None,
    cancel_token: CancellationToken | None = None,
    logger: logging.Logger | None = None,
) -> tuple[list[str], SplitStats]:
    """Ask the split model for sentence boundaries and enforce the length tiers."""
    log = logger or logging.getLogger(__name__)
    prefix = f"[batch {batch_index}] " if batch_index is not None else ""
    log.info(f"{prefix}Splitting {count_words(text)} words")

    response = await client.complete(
        build_split_prompt(config.max_word_count),
        SPLIT_USER_PROMPT.format(text=text),
        temperature=SPLIT_TEMPERATURE,
        timeout=config.request_timeout,
        cancel_token=cancel_token,
    )
    candidates = clean_split_response(response or "")
    if not candidates:
        raise ResegmentError(f"{prefix}split model returned no sentences")

    sentences, stats = classify_and_split(candidates, config, log)
    log.info(
        f"{prefix}Split into {len(sentences)} sentences "
        f"(normal {stats.normal}, tolerated {stats.tolerated}, optimized {stats.optimized}, "
        f"forced {stats.forced}, rejected {stats.rejected})"
    )
    return sentences, stats


# ─────────────────────────────────────────────────────────
#  Alignment back onto word timestamps
# ─────────────────────────────────────────────────────────
def group_by_time_gaps(fragments: Sequence[Fragment], max_gap: int = MAX_GAP_MS) -> list[list[Fragment]]:
    if not fragments:
        return []
    groups: list[list[Fragment]] = [[fragments[0]]]
    for prev, cur in zip(fragments, fragments[1:]):
        if cur.start_time - prev.end_time > max_gap:
            groups.append([cur])
        else:
            groups[-1].append(cur)
    return groups


def merge_segments_based_on_sentences(
    words: Sequence[Fragment],
    sentences: Sequence[str],
    logger: logging.Logger | None = None,
) -> list[Fragment]:
    """Give each sentence the timestamps of the word span it best matches."""
    log = logger or logging.getLogger(__name__)
    output: list[Fragment] = []
    current = 0
    unmatched = 0

    for n, sentence in enumerate(sentences, start=1):
        match = find_best_match(sentence, words, current, MATCH_MAX_SHIFT, MATCH_THRESHOLD)

        if match is not None:
            span = words[match.position:match.position + match.window_size]
            for group in group_by_time_gaps(span):
                output.append(Fragment(len(output) + 1, group[0].start_time, group[-1].end_time, sentence))
            current = match.position + match.window_size
            unmatched = 0
            if match.similarity < LOW_SIMILARITY_WARNING:
                log.debug(f"Sentence {n} matched with low similarity {match.similarity:.1%}")
            continue

        unmatched += 1
        log.warning(f"Sentence {n} not matched: {sentence[:50]!r}")
        if unmatched > MAX_UNMATCHED:
            raise AlignmentError(f"{unmatched} consecutive sentences could not be aligned (limit {MAX_UNMATCHED})")

        last_end = output[-1].end_time if output else (words[0].start_time if words else 0)
        output.append(Fragment(len(output) + 1, last_end, last_end + SYNTHETIC_DURATION_MS, sentence))

    return output


def merge_short_segment(
    fragments: Sequence[Fragment],
    max_word_count: int,
    logger: logging.Logger | None = None,
) -> list[Fragment]:
    """Merge close, short neighbours left to right; the result is a fixed point."""
    log = logger or logging.getLogger(__name__)
    merged = list(fragments)
    i = 0
    while i < len(merged) - 1:
        cur, nxt = merged[i], merged[i + 1]
        gap = abs(nxt.start_time - cur.end_time)
        cur_words = count_words(cur.text)
        next_words = count_words(nxt.text)

        if (gap < SHORT_MERGE_GAP_MS
                and (cur_words < SHORT_MERGE_MIN_WORDS or next_words <= SHORT_MERGE_MIN_WORDS)
                and cur_words + next_words <= max_word_count
                and not cur.text.rstrip().endswith((".", "!", "?"))):
            log.debug(f"Merging short segments: {cur.text!r} + {nxt.text!r}")
            merged[i] = replace(cur, end_time=max(cur.end_time, nxt.end_time), text=f"{cur.text} {nxt.text}")
            del merged[i + 1]
        else:
            i += 1
    return merged


# ─────────────────────────────────────────────────────────
#  Batch driver
# ─────────────────────────────────────────────────────────
class Resegmenter:
    def __init__(self, client: ChatCompleter, config: TranslatorConfig, logger: logging.Logger | None = None):
        self.client = client
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.stats = SplitStats()

    async def resegment_batch(
        self,
        batch: Sequence[PreSplitSentence],
        words: Transcript,
        batch_index: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Transcript:
        """Resegment the word span covered by `batch` into timed subtitle sentences."""
        if not batch:
            return Transcript()

        span = words.fragments[batch[0].word_start_index:batch[-1].word_end_index + 1]
        text = join_fragment_texts(w.text for w in span)

        sentences, stats = await split_by_llm(
            text, self.client, self.config,
            batch_index=batch_index, cancel_token=cancel_token, logger=self.logger,
        )
        self.stats = self.stats + stats

        aligned = merge_segments_based_on_sentences(span, sentences, logger=self.logger)
        merged = merge_short_segment(aligned, self.config.max_word_count, logger=self.logger)
        return Transcript(merged).renumbered()
