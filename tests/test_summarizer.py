import asyncio
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from exceptions import RetryableLLMError
from settings import TranslatorConfig
from summarizer import DEFAULT_SUMMARY, Summarizer, parse_summary_response, summary_to_text

from fakes import ScriptedClient


def test_parse_summary_response_strips_think_and_fences():
    response = '<think>let me see</think>\n```json\n{"corrections": {"WinSurf": "Windsurf"}}\n```'
    assert parse_summary_response(response) == {"corrections": {"WinSurf": "Windsurf"}}


def test_parse_summary_response_rejects_non_json():
    with pytest.raises(ValueError):
        parse_summary_response("no json here")


def test_summarize_fills_missing_sections():
    client = ScriptedClient(lambda s, u: '{"context": {"type": "talk", "topic": "AI", "formality": "formal"}}')
    summary = asyncio.run(Summarizer(client, TranslatorConfig()).summarize("some text", title="Keynote"))

    assert summary["context"]["topic"] == "AI"
    assert summary["style_guide"] == DEFAULT_SUMMARY["style_guide"]
    assert client.calls[0][1].startswith("Title: Keynote")


def test_summarize_returns_defaults_on_failure():
    client = ScriptedClient(lambda s, u: RetryableLLMError("timed out"))
    summary = asyncio.run(Summarizer(client, TranslatorConfig()).summarize("text"))
    assert summary == DEFAULT_SUMMARY
    assert summary is not DEFAULT_SUMMARY


def test_summary_to_text_lists_corrections():
    text = summary_to_text({**DEFAULT_SUMMARY, "corrections": {"WinSurf": "Windsurf"}})
    assert "Topic: Unknown topic" in text
    assert "WinSurf -> Windsurf" in text
