"""Language names and subtitle punctuation conventions."""

import re

LANGUAGE_NAMES = {
    "zh": "Simplified Chinese",
    "zh-cn": "Simplified Chinese",
    "zh-tw": "Traditional Chinese",
    "ja": "Japanese",
    "japanese": "Japanese",
    "en": "English",
    "english": "English",
    "ko": "Korean",
    "korean": "Korean",
    "fr": "French",
    "french": "French",
    "de": "German",
    "german": "German",
    "es": "Spanish",
    "spanish": "Spanish",
    "pt": "Portuguese",
    "portuguese": "Portuguese",
    "it": "Italian",
    "italian": "Italian",
    "ru": "Russian",
    "russian": "Russian",
    "ar": "Arabic",
    "arabic": "Arabic",
    "th": "Thai",
    "thai": "Thai",
    "vi": "Vietnamese",
    "vietnamese": "Vietnamese",
}

SUPPORTED_LANGUAGES = list(LANGUAGE_NAMES)

# Subtitle display convention: drop mid-sentence separators, keep ？！…
_CHINESE_STRIP_RE = re.compile(r"[，。、；：]")


def get_language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code.strip().lower(), code)


def is_chinese(code: str) -> bool:
    lang = code.strip().lower()
    return lang == "zh" or lang.startswith("zh-") or "chinese" in lang or lang == "中文"


def normalize_chinese_punctuation(text: str) -> str:
    return _CHINESE_STRIP_RE.sub("", text)
