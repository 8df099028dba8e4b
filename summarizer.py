"""Optional content summary that gives the translator topic and terminology hints."""

import copy
import datetime
import json
import logging
import re

from cancellation import CancellationToken
from exceptions import LLMError
from llm_client import ChatCompleter
from prompts import SUMMARY_TEMPERATURE, build_summary_prompt
from settings import TranslatorConfig

DEFAULT_SUMMARY = {
    "context": {
        "type": "unknown",
        "topic": "Unknown topic",
        "formality": "neutral",
    },
    "corrections": {},
    "style_guide": {
        "audience": "general",
        "technical_level": "intermediate",
        "tone": "neutral",
    },
}

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_summary_response(response: str) -> dict:
    """Pull the outermost JSON object out of a model reply. Raises ValueError if there is none."""
    text = _THINK_RE.sub("", response)
    text = _FENCE_RE.sub("", text).strip()
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in response")
    data = json.loads(text[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("summary is not a JSON object")
    return data


def summary_to_text(summary: dict) -> str:
    """Flatten a summary dict into the one-paragraph form used as translation context."""
    context = summary.get("context") or {}
    style = summary.get("style_guide") or {}
    corrections = summary.get("corrections") or {}

    parts = [
        f"Type: {context.get('type', 'unknown')}",
        f"Topic: {context.get('topic', 'unknown')}",
        f"Formality: {context.get('formality', 'neutral')}",
        f"Audience: {style.get('audience', 'general')}",
        f"Tone: {style.get('tone', 'neutral')}",
    ]
    if corrections:
        fixes = ", ".join(f"{wrong} -> {right}" for wrong, right in corrections.items())
        parts.append(f"Corrections: {fixes}")
    return ". ".join(parts)


class Summarizer:
    def __init__(self, client: ChatCompleter, config: TranslatorConfig, logger: logging.Logger | None = None):
        self.client = client
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    async def summarize(
        self,
        text: str,
        title: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> dict:
        """Return the summary dict; falls back to DEFAULT_SUMMARY on any model or parse failure."""
        user_prompt = f"Content:\n{text}"
        if title:
            user_prompt = f"Title: {title}\n\n{user_prompt}"

        try:
            response = await self.client.complete(
                build_summary_prompt(datetime.date.today().isoformat()),
                user_prompt,
                temperature=SUMMARY_TEMPERATURE,
                timeout=self.config.request_timeout,
                cancel_token=cancel_token,
            )
            data = parse_summary_response(response)
        except (LLMError, ValueError) as e:
            self.logger.error(f"Content summary failed, using defaults: {e}")
            return copy.deepcopy(DEFAULT_SUMMARY)

        summary = copy.deepcopy(DEFAULT_SUMMARY)
        for key in summary:
            if isinstance(data.get(key), dict):
                summary[key] = data[key]
        self.logger.info(f"Content summary: {json.dumps(summary, ensure_ascii=False)}")
        return summary
