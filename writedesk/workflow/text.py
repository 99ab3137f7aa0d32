"""
Derived text metrics for content bodies.
"""
import math
import re

_TAG_RE = re.compile(r"<[^>]*>")
_DEVANAGARI_RE = re.compile(r"[\u0900-\u097F]")
_LATIN_RE = re.compile(r"[a-zA-Z]")


def count_words(body: str) -> int:
    return len(body.split())


def reading_time(body: str, words_per_minute: int = 200) -> int:
    """Estimated reading time in whole minutes, rounded up."""
    return math.ceil(count_words(body) / words_per_minute)


def make_excerpt(body: str, max_length: int = 160) -> str:
    plain = _TAG_RE.sub("", body)
    if len(plain) <= max_length:
        return plain
    return plain[:max_length].strip() + "..."


def detect_language(text: str) -> str:
    """Classify text as hindi, english or mixed by the scripts it contains."""
    has_hindi = bool(_DEVANAGARI_RE.search(text))
    has_english = bool(_LATIN_RE.search(text))
    if has_hindi and has_english:
        return "mixed"
    if has_hindi:
        return "hindi"
    return "english"
