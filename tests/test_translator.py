import asyncio
import datetime
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from cancellation import CancellationToken
from exceptions import FatalLLMError, OperationCancelled, RetryableLLMError
from settings import TranslatorConfig
from translator import (
    FAILED_PREFIX,
    TranslationContext,
    Translator,
    build_context_block,
    parse_tagged_blocks,
)

from fakes import ScriptedClient, batch_subtitles, is_batch_prompt, prefix_translation


def _subtitles(n: int) -> dict[int, str]:
    return {i: f"line {i}" for i in range(1, n + 1)}


def test_parse_tagged_blocks():
    response = "<1>first</1>\n<2>  second\n</2> <3>broken</4> <1>duplicate</1>"
    assert parse_tagged_blocks(response) == {1: "duplicate", 2: "second"}


def test_parse_tagged_blocks_ignores_reasoning():
    response = "<think>draft: <1>DRAFT</1> <2>only a draft</2></think>\n<1>FINAL</1>"
    assert parse_tagged_blocks(response) == {1: "FINAL"}


def test_translate_keeps_final_answer_after_reasoning():
    client = ScriptedClient(lambda s, u: "<think>draft: <1>DRAFT</1></think>\n<1>FINAL</1>")
    entries = asyncio.run(Translator(client, TranslatorConfig(target_language="en")).translate({1: "hello"}))

    assert entries[0].translation == "FINAL"
    assert len(client.calls) == 1


def test_single_translation_strips_reasoning():
    def handler(system_prompt, user_prompt):
        if is_batch_prompt(user_prompt):
            return "no tags here"
        return "<think>hmm, maybe Hola</think>\nHola"

    entries = asyncio.run(Translator(ScriptedClient(handler), TranslatorConfig(target_language="es")).translate({1: "hello"}))

    assert entries[0].translation == "Hola"


def test_translate_preserves_count_and_order():
    client = ScriptedClient(prefix_translation)
    entries = asyncio.run(Translator(client, TranslatorConfig(target_language="en")).translate(_subtitles(7)))

    assert [e.ordinal for e in entries] == list(range(1, 8))
    assert [e.translation for e in entries] == [f"T:line {i}" for i in range(1, 8)]
    assert len(client.calls) == 1


def test_missing_entries_are_retried_individually():
    missing = {3, 7}

    def handler(system_prompt, user_prompt):
        if is_batch_prompt(user_prompt):
            items = batch_subtitles(user_prompt)
            return "".join(f"<{k}>batch:{v}</{k}>" for k, v in items.items() if int(k) not in missing)
        return f"single:{user_prompt}"

    client = ScriptedClient(handler)
    entries = asyncio.run(Translator(client, TranslatorConfig(target_language="en")).translate(_subtitles(10)))

    assert len(entries) == 10
    for entry in entries:
        if entry.ordinal in missing:
            assert entry.translation == f"single:line {entry.ordinal}"
        else:
            assert entry.translation == f"batch:line {entry.ordinal}"

    batch_calls = [u for _, u in client.calls if is_batch_prompt(u)]
    single_calls = [u for _, u in client.calls if not is_batch_prompt(u)]
    assert len(batch_calls) == 2
    assert sorted(single_calls) == ["line 3", "line 7"]


def test_batch_retry_fills_only_failed_entries():
    responses = iter(["<1>first try</1>", "<1>second try</1><2>filled</2>"])

    def handler(system_prompt, user_prompt):
        return next(responses)

    client = ScriptedClient(handler)
    entries = asyncio.run(Translator(client, TranslatorConfig(target_language="en")).translate(_subtitles(2)))

    assert [e.translation for e in entries] == ["first try", "filled"]
    assert len(client.calls) == 2


def test_batch_errors_fall_back_to_single_requests():
    def handler(system_prompt, user_prompt):
        if is_batch_prompt(user_prompt):
            return RetryableLLMError("HTTP 503: service unavailable", status_code=503)
        return f"single:{user_prompt}"

    client = ScriptedClient(handler)
    entries = asyncio.run(Translator(client, TranslatorConfig(target_language="en")).translate(_subtitles(4)))

    assert [e.translation for e in entries] == [f"single:line {i}" for i in range(1, 5)]
    assert not any(e.failed for e in entries)


def test_single_failures_become_placeholders():
    client = ScriptedClient(lambda s, u: RetryableLLMError("timed out"))
    entries = asyncio.run(Translator(client, TranslatorConfig(target_language="en")).translate(_subtitles(3)))

    assert len(entries) == 3
    assert all(e.failed for e in entries)
    assert entries[0].translation == f"{FAILED_PREFIX} line 1"


def test_chinese_punctuation_is_normalized():
    client = ScriptedClient(lambda s, u: "<1>你好，世界。真的吗？</1>")
    zh = asyncio.run(Translator(client, TranslatorConfig(target_language="zh")).translate({1: "Hello, world. Really?"}))
    assert zh[0].translation == "你好世界真的吗？"


def test_other_languages_keep_punctuation():
    client = ScriptedClient(lambda s, u: "<1>你好，世界。</1>")
    en = asyncio.run(Translator(client, TranslatorConfig(target_language="en")).translate({1: "Hello, world."}))
    assert en[0].translation == "你好，世界。"


def test_placeholders_are_not_normalized():
    client = ScriptedClient(lambda s, u: RetryableLLMError("timed out"))
    entries = asyncio.run(Translator(client, TranslatorConfig(target_language="zh")).translate({1: "a, b."}))
    assert entries[0].translation == f"{FAILED_PREFIX} a, b."


def test_fatal_error_propagates():
    client = ScriptedClient(lambda s, u: FatalLLMError("HTTP 401: invalid api key", status_code=401))
    with pytest.raises(FatalLLMError):
        asyncio.run(Translator(client, TranslatorConfig()).translate(_subtitles(3)))
    assert len(client.calls) == 1


def test_cancellation_propagates_without_placeholders():
    token = CancellationToken()
    token.cancel("stop")
    client = ScriptedClient(prefix_translation)
    with pytest.raises(OperationCancelled):
        asyncio.run(Translator(client, TranslatorConfig()).translate(_subtitles(3), cancel_token=token))
    assert client.calls == []


def test_context_is_sent_with_batch():
    client = ScriptedClient(prefix_translation)
    context = TranslationContext(title="Intro to <Rust>", summary="Topic: systems programming")
    asyncio.run(Translator(client, TranslatorConfig(target_language="en")).translate({1: "hi"}, context=context))

    _, user_prompt = client.calls[0]
    assert "<context>" in user_prompt
    assert "Video title: Intro to Rust" in user_prompt
    assert "Topic: systems programming" in user_prompt


def test_build_context_block():
    assert build_context_block(None) == ""
    assert build_context_block(TranslationContext()) == ""

    block = build_context_block(TranslationContext(description="word " * 600), today=datetime.date(2024, 1, 2))
    assert "Current date: 2024-01-02" in block
    assert block.rstrip().endswith("</context>")
    assert "..." in block
