"""
End-to-end resegmentation and translation run.

The transcript is expanded to word level, pre-split on sentence punctuation
and grouped into batches of sentences. The first batch is processed on its
own so the caller gets early output; the remaining batches run concurrently
and each one is handed to `on_partial` as soon as it is translated.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Sequence

from batch_utils import batch_by_sentence_count, gather_with_limit
from cancellation import CancellationToken
from exceptions import PipelineError, ResegmentError, RetryableLLMError
from llm_client import ChatCompleter
from resegmenter import PreSplitSentence, Resegmenter, presplit_by_punctuation
from settings import TranslatorConfig
from summarizer import Summarizer, summary_to_text
from transcript import Fragment, Transcript
from translator import TranslationContext, Translator

PartialCallback = Callable[["BilingualResult", bool], None]
ProgressCallback = Callable[[str, int, int], None]

PHASE_SUMMARY   = "summary"
PHASE_SPLIT     = "split"
PHASE_TRANSLATE = "translate"
PHASE_COMPLETE  = "complete"


@dataclass
class BilingualResult:
    """Source and target tracks, index aligned with identical timing per pair."""
    source: list[Fragment] = field(default_factory=list)
    target: list[Fragment] = field(default_factory=list)

    def __post_init__(self):
        if len(self.source) != len(self.target):
            raise ValueError(f"track lengths differ: {len(self.source)} source vs {len(self.target)} target")
        for i, (src, tgt) in enumerate(zip(self.source, self.target)):
            if src.start_time != tgt.start_time or src.end_time != tgt.end_time:
                raise ValueError(f"entry {i} is not time-aligned: {src} vs {tgt}")

    def __len__(self) -> int:
        return len(self.source)

    @classmethod
    def merge(cls, results: Iterable["BilingualResult"]) -> "BilingualResult":
        """Concatenate partial results, sort pairs by time and renumber from 1."""
        pairs = [pair for result in results for pair in zip(result.source, result.target)]
        pairs.sort(key=lambda pair: (pair[0].start_time, pair[0].end_time))
        return cls(
            source=[replace(src, ordinal=i + 1) for i, (src, _) in enumerate(pairs)],
            target=[replace(tgt, ordinal=i + 1) for i, (_, tgt) in enumerate(pairs)],
        )


class TranslationPipeline:
    def __init__(
        self,
        config: TranslatorConfig,
        split_client: ChatCompleter,
        translation_client: ChatCompleter,
        summary_client: ChatCompleter | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.resegmenter = Resegmenter(split_client, config, logger=self.logger)
        self.translator = Translator(translation_client, config, logger=self.logger)
        self.summarizer = Summarizer(summary_client, config, logger=self.logger) if summary_client else None
        self._running = False

    async def run(
        self,
        fragments: Sequence[Fragment] | Transcript,
        on_partial: PartialCallback | None = None,
        on_progress: ProgressCallback | None = None,
        context: TranslationContext | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> BilingualResult:
        """Resegment and translate `fragments`; returns every emitted partial merged by time."""
        transcript = fragments if isinstance(fragments, Transcript) else Transcript(fragments)
        if len(transcript) == 0:
            raise PipelineError("input transcript is empty")
        if self._running:
            raise PipelineError("a run is already in progress on this pipeline")

        self._running = True
        try:
            return await self._run(transcript, on_partial, on_progress, context, cancel_token)
        finally:
            self._running = False

    async def _run(self, transcript, on_partial, on_progress, context, cancel_token) -> BilingualResult:
        def progress(phase: str, current: int, total: int) -> None:
            if on_progress is not None:
                on_progress(phase, current, total)

        if transcript.is_word_level():
            words = transcript.renumbered()
        else:
            words = transcript.expand_to_words()
        if len(words) == 0:
            raise PipelineError("input transcript has no words")
        self.logger.info(f"Word-level transcript: {len(words)} words")

        if self.config.enable_summary and self.summarizer is not None:
            progress(PHASE_SUMMARY, 0, 1)
            summary = await self.summarizer.summarize(
                words.to_text(), title=context.title if context else None, cancel_token=cancel_token
            )
            context = replace(context or TranslationContext(), summary=summary_to_text(summary))
            progress(PHASE_SUMMARY, 1, 1)

        sentences = presplit_by_punctuation(words.fragments)
        batches = batch_by_sentence_count(
            sentences,
            self.config.first_batch_sentences,
            self.config.min_batch_sentences,
            self.config.max_batch_sentences,
        )
        total_sentences = len(sentences)
        self.logger.info(f"Pre-split {total_sentences} sentences into {len(batches)} batches")

        partials: list[BilingualResult] = []
        split_done = 0
        sentences_done = 0

        def batch_finished(batch: Sequence[PreSplitSentence], result: BilingualResult | None, is_first: bool) -> None:
            nonlocal sentences_done
            sentences_done += len(batch)
            if result is not None:
                partials.append(result)
                if on_partial is not None:
                    on_partial(result, is_first)
            progress(PHASE_TRANSLATE, sentences_done, total_sentences)

        def split_finished() -> None:
            nonlocal split_done
            split_done += 1
            progress(PHASE_SPLIT, split_done, len(batches))

        progress(PHASE_SPLIT, 0, len(batches))

        first = await self._process_batch(batches[0], words, None, context, cancel_token, split_finished)
        batch_finished(batches[0], first, True)

        async def run_remaining(index: int, batch: Sequence[PreSplitSentence]) -> None:
            try:
                result = await self._process_batch(batch, words, index, context, cancel_token, split_finished)
            except (ResegmentError, RetryableLLMError) as e:
                self.logger.error(f"[batch {index}] skipped: {e}")
                result = None
            batch_finished(batch, result, False)

        remaining = batches[1:]
        if remaining:
            self.logger.info(f"Processing {len(remaining)} remaining batches (concurrency {self.config.thread_num})")
            await gather_with_limit(
                [lambda i=i, b=b: run_remaining(i, b) for i, b in enumerate(remaining, start=1)],
                self.config.thread_num,
            )

        progress(PHASE_COMPLETE, total_sentences, total_sentences)
        merged = BilingualResult.merge(partials)
        self.logger.info(f"Pipeline finished: {len(merged)} subtitles, split stats {self.resegmenter.stats}")
        return merged

    async def _process_batch(
        self,
        batch: Sequence[PreSplitSentence],
        words: Transcript,
        index: int | None,
        context: TranslationContext | None,
        cancel_token: CancellationToken | None,
        on_split: Callable[[], None],
    ) -> BilingualResult:
        label = f"batch {index}" if index is not None else "first batch"
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        segments = await self.resegmenter.resegment_batch(batch, words, batch_index=index, cancel_token=cancel_token)
        on_split()
        self.logger.info(f"[{label}] resegmented {len(batch)} sentences into {len(segments)} subtitles")

        subtitles = {i + 1: seg.text for i, seg in enumerate(segments)}
        entries = await self.translator.translate(subtitles, context, batch_label=label, cancel_token=cancel_token)

        source: list[Fragment] = []
        target: list[Fragment] = []
        for seg, entry in zip(segments, entries):
            entry = replace(entry, start_time=seg.start_time, end_time=seg.end_time)
            source.append(Fragment(entry.ordinal, entry.start_time, entry.end_time, entry.original))
            target.append(Fragment(entry.ordinal, entry.start_time, entry.end_time, entry.translation))
        return BilingualResult(source, target)
