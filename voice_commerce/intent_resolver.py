"""
Intent resolution over normalized text.

Walks the active pattern list (category priority order, dialect patterns
first inside a category when the language is Swiss German) and returns the
first template that matches the whole utterance. Below the confidence
threshold, or with no match at all, it returns ranked suggestions instead.
"""

from __future__ import annotations

import re
from difflib import SequenceMatcher
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from logging_setup import get_logger, Component

from .grammar import Template, parse_number
from .models import Context, MatchResult, Suggestion
from .normalizer import normalize
from .patterns import CommandPattern, _category_rank, active_patterns, custom_patterns

logger = get_logger(Component.INTENT_RESOLVER)

DEFAULT_THRESHOLD = 0.7
MAX_SUGGESTIONS = 3
MIN_SUGGESTION_SIMILARITY = 0.3

# Slots that always carry an int; quantity falls back to 1 when not spoken
NUMERIC_SLOTS = ("quantity", "table", "guests")

# A free-text item holding one of these is a booking, not a product ("tisch reservieren")
BOOKING_WORDS = re.compile(r"\b(reservieren|reserviere|buchen|réserver|réserve|prenotare|prenota|reserve|book)\b")


def specificity(template: Template, entities: Mapping[str, Any]) -> float:
    """
    1.0 for slotless templates; otherwise 0.5 plus half the share of declared
    slots that captured a non-empty value.
    """
    if not template.slots:
        return 1.0
    filled = sum(1 for s in template.slots if entities.get(s.name) not in (None, ""))
    return 0.5 + 0.5 * filled / len(template.slots)


def combine_confidence(recognizer_confidence: float, pattern_specificity: float) -> float:
    """
    Final match confidence; non-decreasing in both arguments.

    >>> combine_confidence(1.0, 1.0)
    1.0
    """
    recognizer_confidence = min(max(recognizer_confidence, 0.0), 1.0)
    pattern_specificity = min(max(pattern_specificity, 0.0), 1.0)
    return round(recognizer_confidence * (0.75 + 0.25 * pattern_specificity), 4)


def _type_entities(raw: Mapping[str, Optional[str]]) -> Dict[str, Any]:
    entities: Dict[str, Any] = {}
    for name, value in raw.items():
        if value is None:
            continue
        value = value.strip()
        if name in NUMERIC_SLOTS:
            number = parse_number(value)
            entities[name] = number if number is not None else value
        else:
            entities[name] = value
    return entities


class IntentResolver:
    """
    Matches normalized utterances against the command pattern tables.

    One resolver serves every language; the pattern list for a given
    (dialect, custom commands) combination is built once and cached.
    """

    def __init__(self, custom_commands: Sequence[Mapping[str, Any]] = ()):
        self._custom: List[CommandPattern] = custom_patterns(custom_commands)
        self._pattern_cache: Dict[bool, List[CommandPattern]] = {}
        self._example_cache: Dict[Tuple[str, Optional[str]], List[Tuple[str, str, CommandPattern, int]]] = {}

    def set_custom_commands(self, custom_commands: Sequence[Mapping[str, Any]]) -> None:
        self._custom = custom_patterns(custom_commands)
        self._pattern_cache.clear()
        self._example_cache.clear()

    def patterns_for(self, language: str) -> List[CommandPattern]:
        dialect = language == "de-CH"
        if dialect not in self._pattern_cache:
            self._pattern_cache[dialect] = active_patterns(dialect, self._custom)
        return self._pattern_cache[dialect]

    def match(
        self,
        text: str,
        context: Optional[Context] = None,
        *,
        language: str = "de-CH",
        confidence: float = 1.0,
        threshold: float = DEFAULT_THRESHOLD,
        dialect: Optional[str] = None,
    ) -> MatchResult:
        """
        Resolve `text` (already normalized) to an intent.

        `context` does not change which pattern matches; it is reported in the
        log so a follow-up can be traced to the frame that interpreted it.
        """
        for pattern in self.patterns_for(language):
            for template in pattern.compiled:
                captured = template.match(text)
                if captured is None:
                    continue
                entities = _type_entities(captured)
                if pattern.intent == "add_to_cart" and BOOKING_WORDS.search(str(entities.get("item", ""))):
                    continue
                score = combine_confidence(confidence, specificity(template, entities))
                if pattern.intent == "add_to_cart" and "quantity" not in entities:
                    entities["quantity"] = 1
                if score < threshold:
                    logger.info(
                        "Match below threshold",
                        intent=pattern.intent,
                        confidence=score,
                        threshold=threshold,
                    )
                    return MatchResult(
                        intent=None,
                        entities={},
                        confidence=score,
                        suggestions=self.suggest(text, language, dialect=dialect),
                    )
                logger.debug(
                    "Intent matched",
                    intent=pattern.intent,
                    category=pattern.category,
                    template=template.source,
                    confidence=score,
                    context=context.type.value if context else None,
                )
                return MatchResult(
                    intent=pattern.intent,
                    entities=entities,
                    confidence=score,
                    category=pattern.category,
                    pattern=template.source,
                    dialect=pattern.dialect,
                )

        logger.info("No pattern matched", language=language)
        return MatchResult(
            intent=None,
            entities={},
            confidence=0.0,
            suggestions=self.suggest(text, language, dialect=dialect),
        )

    def _examples(self, language: str, dialect: Optional[str]) -> List[Tuple[str, str, CommandPattern, int]]:
        key = (language, dialect)
        if key not in self._example_cache:
            examples = []
            order = 0
            for pattern in self.patterns_for(language):
                for example in pattern.examples:
                    examples.append((example, normalize(example, language, dialect), pattern, order))
                    order += 1
            self._example_cache[key] = examples
        return self._example_cache[key]

    def suggest(
        self,
        text: str,
        language: str,
        *,
        limit: int = MAX_SUGGESTIONS,
        dialect: Optional[str] = None,
    ) -> List[Suggestion]:
        """
        Up to `limit` example utterances most similar to `text`.

        Ranked by similarity, then category priority, then declaration order;
        each intent is offered once.
        """
        if not text:
            return []
        scored = []
        for example, normalized, pattern, order in self._examples(language, dialect):
            ratio = SequenceMatcher(None, text, normalized).ratio()
            if ratio < MIN_SUGGESTION_SIMILARITY:
                continue
            scored.append((-ratio, _category_rank(pattern.category), order, example, pattern))
        scored.sort(key=lambda item: item[:3])

        suggestions: List[Suggestion] = []
        seen_intents = set()
        for neg_ratio, _, _, example, pattern in scored:
            if pattern.intent in seen_intents:
                continue
            seen_intents.add(pattern.intent)
            suggestions.append(Suggestion(
                text=example,
                intent=pattern.intent,
                category=pattern.category,
                similarity=round(-neg_ratio, 4),
            ))
            if len(suggestions) >= limit:
                break
        return suggestions
