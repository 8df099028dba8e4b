"""Runtime configuration for the resegmentation and translation pipeline."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from exceptions import ConfigurationError

# ─────────────────────────────────────────────────────────
#  Defaults
# ─────────────────────────────────────────────────────────
DEFAULT_BASE_URL         = "https://api.openai.com/v1"
DEFAULT_SPLIT_MODEL      = "gpt-4o-mini"
DEFAULT_SUMMARY_MODEL    = "gpt-4o-mini"
DEFAULT_TRANSLATE_MODEL  = "gpt-4o"
DEFAULT_TARGET_LANGUAGE  = "zh"
DEFAULT_MAX_WORD_COUNT   = 19
DEFAULT_THREAD_NUM       = 3
DEFAULT_SINGLE_THREADS   = 5
DEFAULT_MAX_RPM          = 120
DEFAULT_REQUEST_TIMEOUT  = 80.0


@dataclass(frozen=True)
class TranslatorConfig:
    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    split_model: str = DEFAULT_SPLIT_MODEL
    translation_model: str = DEFAULT_TRANSLATE_MODEL
    summary_model: str = DEFAULT_SUMMARY_MODEL
    target_language: str = DEFAULT_TARGET_LANGUAGE
    max_word_count: int = DEFAULT_MAX_WORD_COUNT
    # Length tiers: target < tolerance < warning < max
    tolerance_multiplier: float = 1.2
    warning_multiplier: float = 1.5
    max_multiplier: float = 2.0
    thread_num: int = DEFAULT_THREAD_NUM
    single_thread_num: int = DEFAULT_SINGLE_THREADS
    first_batch_sentences: int = 5
    min_batch_sentences: int = 5
    max_batch_sentences: int = 10
    max_retries: int = 1
    retry_delays: tuple[float, ...] = field(default=(1.0, 2.0))
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_rpm: int = DEFAULT_MAX_RPM
    enable_summary: bool = False

    @property
    def tolerance_threshold(self) -> int:
        return int(self.max_word_count * self.tolerance_multiplier)

    @property
    def warning_threshold(self) -> int:
        return int(self.max_word_count * self.warning_multiplier)

    @property
    def max_threshold(self) -> int:
        return int(self.max_word_count * self.max_multiplier)


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _read_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config(env: Mapping[str, str] | None = None, **overrides) -> TranslatorConfig:
    """Build a TranslatorConfig from environment variables, then apply keyword overrides."""
    if env is None:
        env = os.environ

    values = dict(
        base_url=(env.get("OPENAI_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
        api_key=env.get("OPENAI_API_KEY", ""),
        split_model=env.get("SPLIT_MODEL") or DEFAULT_SPLIT_MODEL,
        translation_model=env.get("TRANSLATION_MODEL") or DEFAULT_TRANSLATE_MODEL,
        summary_model=env.get("SUMMARY_MODEL") or DEFAULT_SUMMARY_MODEL,
        target_language=env.get("TARGET_LANGUAGE") or DEFAULT_TARGET_LANGUAGE,
        max_word_count=_read_int(env, "MAX_WORD_COUNT", DEFAULT_MAX_WORD_COUNT),
        thread_num=_read_int(env, "THREAD_NUM", DEFAULT_THREAD_NUM),
        single_thread_num=_read_int(env, "SINGLE_THREAD_NUM", DEFAULT_SINGLE_THREADS),
        tolerance_multiplier=_read_float(env, "TOLERANCE_MULTIPLIER", 1.2),
        warning_multiplier=_read_float(env, "WARNING_MULTIPLIER", 1.5),
        max_multiplier=_read_float(env, "MAX_MULTIPLIER", 2.0),
        max_rpm=_read_int(env, "MAX_RPM", DEFAULT_MAX_RPM),
        request_timeout=_read_float(env, "REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        enable_summary=_read_bool(env, "ENABLE_SUMMARY", False),
    )
    values.update({k: v for k, v in overrides.items() if v is not None})
    return TranslatorConfig(**values)


def load_env_file(env_path: str | Path | None = None) -> Path | None:
    """Load a .env file (current or parent directory by default) without overriding the environment."""
    from dotenv import load_dotenv

    candidates = [Path(env_path)] if env_path else [Path.cwd() / ".env", Path.cwd().parent / ".env"]
    for candidate in candidates:
        if candidate.is_file():
            load_dotenv(candidate, override=False)
            return candidate
    return None


def validate_config(config: TranslatorConfig) -> list[str]:
    """Return a list of human-readable problems; empty when the config is usable."""
    errors: list[str] = []

    if not config.api_key:
        errors.append("API key is not configured (OPENAI_API_KEY)")
    if not config.base_url:
        errors.append("API base URL is not configured (OPENAI_BASE_URL)")
    if not 5 <= config.max_word_count <= 50:
        errors.append("max_word_count must be between 5 and 50")
    if not (1.0 <= config.tolerance_multiplier <= config.warning_multiplier <= config.max_multiplier):
        errors.append("length multipliers must satisfy 1 <= tolerance <= warning <= max")
    if config.thread_num < 1 or config.single_thread_num < 1:
        errors.append("concurrency widths must be at least 1")
    if config.first_batch_sentences < 1:
        errors.append("first_batch_sentences must be at least 1")
    if not 1 <= config.min_batch_sentences <= config.max_batch_sentences:
        errors.append("batch sentence range must satisfy 1 <= min <= max")
    if config.max_retries < 0 or not config.retry_delays:
        errors.append("retry policy needs max_retries >= 0 and at least one delay")
    if config.max_rpm < 1:
        errors.append("max_rpm must be at least 1")

    return errors
