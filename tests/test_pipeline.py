import asyncio
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from cancellation import CancellationToken
from exceptions import FatalLLMError, OperationCancelled, PipelineError
from pipeline import BilingualResult, TranslationPipeline
from settings import TranslatorConfig
from transcript import Fragment, Transcript
from translator import TranslationContext

from fakes import ScriptedClient, echo_sentences, prefix_translation, split_text

NUMBERS = ["one", "two", "three", "four", "five", "six",
           "seven", "eight", "nine", "ten", "eleven", "twelve"]
CONFIG = TranslatorConfig(api_key="k", target_language="en")


def _sentences():
    return [f"Sentence {n} is here." for n in NUMBERS]


def _fragments():
    return [Fragment(i + 1, i * 3000, i * 3000 + 2000, text) for i, text in enumerate(_sentences())]


def _run(pipeline, fragments, **kwargs):
    return asyncio.run(pipeline.run(fragments, **kwargs))


def test_bilingual_result_requires_aligned_tracks():
    src = [Fragment(1, 0, 100, "a")]
    with pytest.raises(ValueError):
        BilingualResult(src, [])
    with pytest.raises(ValueError):
        BilingualResult(src, [Fragment(1, 0, 200, "b")])


def test_bilingual_result_merge_sorts_and_renumbers():
    late = BilingualResult([Fragment(1, 500, 600, "late")], [Fragment(1, 500, 600, "LATE")])
    early = BilingualResult([Fragment(1, 0, 100, "early")], [Fragment(1, 0, 100, "EARLY")])
    merged = BilingualResult.merge([late, early])

    assert [f.text for f in merged.source] == ["early", "late"]
    assert [f.text for f in merged.target] == ["EARLY", "LATE"]
    assert [f.ordinal for f in merged.target] == [1, 2]


def test_empty_input_fails_fast():
    pipeline = TranslationPipeline(CONFIG, ScriptedClient(echo_sentences), ScriptedClient(prefix_translation))
    with pytest.raises(PipelineError):
        _run(pipeline, [])
    with pytest.raises(PipelineError):
        _run(pipeline, [Fragment(1, 0, 100, "   ")])


def test_full_run_emits_partials_and_progress():
    split_client = ScriptedClient(echo_sentences)
    pipeline = TranslationPipeline(CONFIG, split_client, ScriptedClient(prefix_translation))
    partials = []
    progress = []

    result = _run(
        pipeline,
        _fragments(),
        on_partial=lambda partial, is_first: partials.append((len(partial), is_first)),
        on_progress=lambda phase, current, total: progress.append((phase, current, total)),
    )

    assert partials == [(5, True), (7, False)]
    assert len(split_client.calls) == 2
    assert [f.text for f in result.source] == _sentences()
    assert [f.text for f in result.target] == [f"T:{s}" for s in _sentences()]
    assert [(f.start_time, f.end_time) for f in result.source] == [(f.start_time, f.end_time) for f in _fragments()]
    assert [f.ordinal for f in result.source] == list(range(1, 13))

    translate_progress = [current for phase, current, _ in progress if phase == "translate"]
    assert translate_progress == sorted(translate_progress)
    assert translate_progress[-1] == 12
    assert progress[-1] == ("complete", 12, 12)
    assert ("split", 2, 2) in progress


def test_word_level_input_is_used_directly():
    words = Transcript.from_tuples([
        (0, 300, "Hello"), (300, 600, "world"), (600, 650, "."),
        (800, 1100, "Bye"), (1100, 1400, "now"), (1400, 1450, "."),
    ])
    pipeline = TranslationPipeline(CONFIG, ScriptedClient(echo_sentences), ScriptedClient(prefix_translation))
    result = _run(pipeline, words)

    assert [f.text for f in result.source] == ["Hello world.", "Bye now."]
    assert [(f.start_time, f.end_time) for f in result.target] == [(0, 650), (800, 1450)]


def test_failed_alignment_skips_only_that_batch():
    def split(system_prompt, user_prompt):
        if "twelve" in split_text(user_prompt):
            return "<br>".join(["0000"] * 6)
        return echo_sentences(system_prompt, user_prompt)

    pipeline = TranslationPipeline(CONFIG, ScriptedClient(split), ScriptedClient(prefix_translation))
    partials = []
    progress = []
    result = _run(
        pipeline,
        _fragments(),
        on_partial=lambda partial, is_first: partials.append(is_first),
        on_progress=lambda phase, current, total: progress.append((phase, current, total)),
    )

    assert partials == [True]
    assert [f.text for f in result.source] == _sentences()[:5]
    assert ("translate", 12, 12) in progress


def test_fatal_error_in_remaining_batch_aborts_run():
    def translate(system_prompt, user_prompt):
        if "twelve" in user_prompt:
            return FatalLLMError("HTTP 401: invalid api key", status_code=401)
        return prefix_translation(system_prompt, user_prompt)

    pipeline = TranslationPipeline(CONFIG, ScriptedClient(echo_sentences), ScriptedClient(translate))
    with pytest.raises(FatalLLMError):
        _run(pipeline, _fragments())


def test_cancelled_run_raises():
    token = CancellationToken()
    token.cancel()
    split_client = ScriptedClient(echo_sentences)
    pipeline = TranslationPipeline(CONFIG, split_client, ScriptedClient(prefix_translation))

    with pytest.raises(OperationCancelled):
        _run(pipeline, _fragments(), cancel_token=token)
    assert split_client.calls == []


class _TokenBlindClient(ScriptedClient):
    """Ignores the token so only the pipeline's own checks can stop a call."""

    async def complete(self, system_prompt, user_prompt, **kwargs):
        kwargs["cancel_token"] = None
        return await super().complete(system_prompt, user_prompt, **kwargs)


def test_cancel_after_first_partial_keeps_it_and_starts_no_new_calls():
    token = CancellationToken()
    split_client = _TokenBlindClient(echo_sentences)
    translation_client = _TokenBlindClient(prefix_translation)
    pipeline = TranslationPipeline(CONFIG, split_client, translation_client)
    partials = []

    def on_partial(partial, is_first):
        partials.append(partial)
        token.cancel("user stopped")

    with pytest.raises(OperationCancelled, match="user stopped"):
        _run(pipeline, _fragments(), on_partial=on_partial, cancel_token=token)

    assert len(partials) == 1
    assert [f.text for f in partials[0].target] == [f"T:{s}" for s in _sentences()[:5]]
    assert len(split_client.calls) == 1
    assert len(translation_client.calls) == 1


def test_concurrent_run_is_rejected():
    pipeline = TranslationPipeline(
        CONFIG, ScriptedClient(echo_sentences, delay=0.05), ScriptedClient(prefix_translation)
    )

    async def run():
        first = asyncio.ensure_future(pipeline.run(_fragments()))
        await asyncio.sleep(0)
        with pytest.raises(PipelineError):
            await pipeline.run(_fragments())
        return await first

    result = asyncio.run(run())
    assert len(result) == 12


def test_summary_feeds_translation_context():
    config = TranslatorConfig(api_key="k", target_language="en", enable_summary=True)
    summary_client = ScriptedClient(
        lambda s, u: '```json\n{"context": {"type": "lecture", "topic": "counting numbers", "formality": "casual"}}\n```'
    )
    translation_client = ScriptedClient(prefix_translation)
    pipeline = TranslationPipeline(config, ScriptedClient(echo_sentences), translation_client, summary_client)
    progress = []

    _run(
        pipeline,
        _fragments(),
        context=TranslationContext(title="Numbers"),
        on_progress=lambda phase, current, total: progress.append(phase),
    )

    assert progress[0] == "summary"
    _, batch_prompt = translation_client.calls[0]
    assert "counting numbers" in batch_prompt
    assert "Video title: Numbers" in batch_prompt
