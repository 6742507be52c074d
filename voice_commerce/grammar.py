"""
Declarative match templates.

A template is a space-separated sequence over normalized (lowercase) text:

    füge [{quantity:number}] {item} [hinzu|dazu]

- plain words match literally
- (a|b c)   one of the alternatives (each may be several words)
- [a|b]     optional group, same inner syntax
- {name}            free-text slot (one or more words)
- {name:number}     digits or a number word, parsed to int by the resolver
- {name:word}       exactly one word

Templates compile once to an anchored regular expression. Polite fillers
("bitte", "please", ...) are accepted at either end of every template.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

NUMBER_WORDS: Dict[str, int] = {
    # German (Swiss forms arrive already folded)
    "eins": 1, "einmal": 1, "zwei": 2, "zweimal": 2, "drei": 3, "dreimal": 3,
    "vier": 4, "fünf": 5, "sechs": 6, "sieben": 7, "acht": 8, "neun": 9,
    "zehn": 10, "elf": 11, "zwölf": 12,
    # French
    "deux": 2, "trois": 3, "quatre": 4, "cinq": 5, "six": 6, "sept": 7,
    "huit": 8, "neuf": 9, "dix": 10, "onze": 11, "douze": 12,
    # Italian
    "due": 2, "tre": 3, "quattro": 4, "cinque": 5, "sei": 6, "sette": 7,
    "otto": 8, "nove": 9, "dieci": 10, "undici": 11, "dodici": 12,
    # English
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}

LEADING_FILLERS = ("bitte", "please", "also", "äh", "ähm", "euh", "ehm")
TRAILING_FILLERS = ("bitte", "please", "danke", "merci", "per favore", "s'il vous plaît", "svp")

SLOT_KINDS = ("text", "number", "word")

_TOKEN_RE = re.compile(r"\{[^}]*\}|[()\[\]|]|[^\s()\[\]|{}]+")


class TemplateError(ValueError):
    """A template string could not be parsed."""


@dataclass(frozen=True)
class Slot:
    name: str
    kind: str = "text"


# AST nodes: ("word", str) | ("slot", Slot) | ("group", alternatives, optional)
Node = Union[Tuple[str, str], Tuple[str, Slot], Tuple[str, List[List["Node"]], bool]]


def parse_number(value: Optional[str]) -> Optional[int]:
    """Parse digits or a number word; None when it is neither."""
    if value is None:
        return None
    value = value.strip().lower()
    if value.isdigit():
        return int(value)
    return NUMBER_WORDS.get(value)


def _number_alternation() -> str:
    words = sorted(NUMBER_WORDS, key=len, reverse=True)
    return r"\d+|" + "|".join(re.escape(w) for w in words)


class _Parser:
    def __init__(self, source: str):
        self.source = source
        self.tokens = _TOKEN_RE.findall(source)
        self.pos = 0
        self.slots: List[Slot] = []

    def _peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def parse(self) -> List[Node]:
        seq = self._sequence()
        if self._peek() is not None:
            raise TemplateError(f"Unexpected {self._peek()!r} in template {self.source!r}")
        if not seq:
            raise TemplateError("Empty template")
        return seq

    def _sequence(self) -> List[Node]:
        nodes: List[Node] = []
        while True:
            tok = self._peek()
            if tok is None or tok in (")", "]", "|"):
                return nodes
            self.pos += 1
            if tok == "(":
                nodes.append(("group", self._alternatives(")"), False))
            elif tok == "[":
                nodes.append(("group", self._alternatives("]"), True))
            elif tok.startswith("{"):
                nodes.append(("slot", self._slot(tok)))
            else:
                nodes.append(("word", tok.lower()))

    def _alternatives(self, close: str) -> List[List[Node]]:
        alternatives = [self._sequence()]
        while self._peek() == "|":
            self.pos += 1
            alternatives.append(self._sequence())
        if self._peek() != close:
            raise TemplateError(f"Missing {close!r} in template {self.source!r}")
        self.pos += 1
        if any(not alt for alt in alternatives):
            raise TemplateError(f"Empty alternative in template {self.source!r}")
        return alternatives

    def _slot(self, tok: str) -> Slot:
        body = tok[1:-1].strip()
        name, _, kind = body.partition(":")
        name, kind = name.strip(), (kind.strip() or "text")
        if not name.isidentifier():
            raise TemplateError(f"Invalid slot name {name!r} in template {self.source!r}")
        if kind not in SLOT_KINDS:
            raise TemplateError(f"Unknown slot kind {kind!r} in template {self.source!r}")
        if any(s.name == name for s in self.slots):
            raise TemplateError(f"Duplicate slot {name!r} in template {self.source!r}")
        slot = Slot(name=name, kind=kind)
        self.slots.append(slot)
        return slot


def _render(nodes: List[Node]) -> str:
    # Every element carries its own leading space; the subject is matched
    # as " " + text, so optional elements anywhere stay well-formed.
    parts: List[str] = []
    for node in nodes:
        kind = node[0]
        if kind == "word":
            parts.append(" " + re.escape(node[1]))
        elif kind == "slot":
            slot: Slot = node[1]
            if slot.kind == "number":
                body = _number_alternation()
            elif slot.kind == "word":
                body = r"[^ ]+"
            else:
                body = r"[^ ].*?"
            parts.append(f" (?P<{slot.name}>{body})")
        else:
            inner = "|".join(_render(alt) for alt in node[1])
            parts.append(f"(?:{inner})" + ("?" if node[2] else ""))
    return "".join(parts)


def _filler_group(fillers: Tuple[str, ...]) -> str:
    return "(?:" + "|".join(" " + re.escape(f) for f in fillers) + ")?"


class Template:
    """One compiled match template."""

    def __init__(self, source: str):
        self.source = source.strip()
        parser = _Parser(self.source)
        nodes = parser.parse()
        self.slots: Tuple[Slot, ...] = tuple(parser.slots)
        self.regex = re.compile(
            "^" + _filler_group(LEADING_FILLERS) + _render(nodes) + _filler_group(TRAILING_FILLERS) + "$"
        )

    @property
    def slot_names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.slots)

    def match(self, text: str) -> Optional[Dict[str, Optional[str]]]:
        """
        Captured slot values for a full match of `text`, or None.

        Slots inside optional groups that did not participate map to None.
        """
        m = self.regex.match(" " + text.strip())
        if m is None:
            return None
        return {s.name: (m.group(s.name) or None) for s in self.slots}

    def __repr__(self) -> str:
        return f"Template({self.source!r})"
