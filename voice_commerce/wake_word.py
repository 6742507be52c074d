"""
Wake-word detection.

A wake phrase is matched case-insensitively anywhere in a transcript, or in the
transcript with all whitespace removed (recognizers sometimes split "eatech"
into "eat tech"). A match arms listening and is stripped from the text that is
passed on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from logging_setup import get_logger, Component

logger = get_logger(Component.WAKE_WORD)

WAKE_WORDS: List[str] = [
    "hey eatech",
    "hallo eatech",
    "grüezi eatech",
    "eatech",
    "computer",
    "assistent",
]

SWISS_WAKE_WORDS: List[str] = [
    "grüezi eatech",
    "hoi eatech",
    "sali eatech",
    "eatech lueg",
    "eatech mach",
]


@dataclass(frozen=True)
class WakeWordMatch:
    phrase: str
    remainder: str


def wake_words_for(language: str, custom: Optional[str] = None) -> List[str]:
    """
    Wake phrases for a language, Swiss variants first for Swiss languages,
    plus the user's own phrase. Duplicates are dropped, order kept.
    """
    phrases: List[str] = []
    if custom and custom.strip():
        phrases.append(custom.strip().lower())
    if language.endswith("-CH"):
        phrases.extend(SWISS_WAKE_WORDS)
    phrases.extend(WAKE_WORDS)
    seen = set()
    ordered = []
    for p in phrases:
        if p not in seen:
            seen.add(p)
            ordered.append(p)
    return ordered


def _strip_compact(text: str, phrase: str) -> Optional[str]:
    """
    Remove `phrase` from `text` where the text only contains it once spaces are
    ignored. Returns None when there is no such occurrence.
    """
    compact_phrase = phrase.replace(" ", "")
    pattern = r"\s*".join(re.escape(ch) for ch in compact_phrase)
    match = re.search(pattern, text, flags=re.IGNORECASE)
    if not match:
        return None
    return text[:match.start()] + " " + text[match.end():]


class WakeWordDetector:
    """Matches and strips wake phrases; longest phrase wins."""

    def __init__(self, phrases: Iterable[str]):
        self.phrases: Sequence[str] = sorted(
            {p.strip().lower() for p in phrases if p and p.strip()},
            key=len,
            reverse=True,
        )

    @classmethod
    def for_language(cls, language: str, custom: Optional[str] = None) -> "WakeWordDetector":
        return cls(wake_words_for(language, custom))

    def detect(self, text: str) -> Optional[WakeWordMatch]:
        if not text:
            return None
        lowered = text.lower()
        compact = re.sub(r"\s+", "", lowered)
        for phrase in self.phrases:
            # Offsets from `lowered` do not map onto `text` when lowering changes length
            found = re.search(re.escape(phrase), text, flags=re.IGNORECASE) if phrase in lowered else None
            if found:
                remainder = text[:found.start()] + " " + text[found.end():]
            elif phrase.replace(" ", "") in compact:
                remainder = _strip_compact(text, phrase)
                if remainder is None:
                    continue
            else:
                continue
            remainder = " ".join(remainder.split()).strip(" ,.!?")
            logger.debug("Wake word detected", phrase=phrase, remainder_length=len(remainder))
            return WakeWordMatch(phrase=phrase, remainder=remainder)
        return None
