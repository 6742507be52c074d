"""
Dialect-aware transcript normalization.

normalize(text, language, dialect) rewrites a raw transcript into the canonical
form the pattern tables are written in:

1. lowercase, Unicode NFC, whitespace collapsed
2. dialect folding (Swiss languages only): dialect spellings -> standard tokens,
   multi-word phrases before single words
3. substitution of the brand name, currency shorthand and symbols into the
   spoken form of the active language
4. punctuation stripped (decimal points and clock colons between digits survive)

Every folding output is itself left unchanged by the tables, so normalize is
idempotent.
"""

import re
import unicodedata
from functools import lru_cache
from typing import Dict, List, Optional, Pattern, Tuple

SWISS_LANGUAGES = frozenset({"de-CH", "fr-CH", "it-CH"})
DEFAULT_SWISS_GERMAN_DIALECT = "ZH"

# Shared by every Swiss German dialect
SWISS_GERMAN_COMMON: Dict[str, str] = {
    # greetings and courtesy
    "grüezi": "guten tag",
    "grüezi mitenand": "guten tag",
    "grüessech": "guten tag",
    "hoi": "hallo",
    "hoi zäme": "hallo",
    "sali": "hallo",
    "salü": "hallo",
    "merci": "danke",
    "merci vilmal": "vielen dank",
    "uf widerluege": "auf wiedersehen",
    "adieu": "auf wiedersehen",
    "en guete": "guten appetit",
    "guete morge": "guten morgen",
    # numbers
    "eis": "eins",
    "zwöi": "zwei",
    "zwee": "zwei",
    "zwoi": "zwei",
    "drü": "drei",
    "drüü": "drei",
    "föif": "fünf",
    "foif": "fünf",
    "sächs": "sechs",
    "sibe": "sieben",
    "nüün": "neun",
    "nün": "neun",
    "zäh": "zehn",
    "zää": "zehn",
    # articles and pronouns
    "en": "ein",
    "e": "eine",
    "es paar": "ein paar",
    "i": "ich",
    "de": "der",
    "d": "die",
    "s": "das",
    # verbs
    "isch": "ist",
    "hät": "hat",
    "git": "gibt",
    "chönd": "können",
    "chönnt": "könnte",
    "chönnted": "könnten",
    "wänd": "wollen",
    "wett": "möchte",
    "wött": "möchte",
    "möcht": "möchte",
    "hett": "hätte",
    "han": "habe",
    "ha": "haben",
    "händ": "haben",
    "hend": "haben",
    "chan": "kann",
    "cha": "kann",
    "bisch": "bist",
    "gsi": "gewesen",
    "mach": "mache",
    "mached": "machen",
    "zeig": "zeige",
    "zeiged": "zeigen",
    "füeg": "füge",
    "füeged": "fügen",
    "lösch": "lösche",
    "bstell": "bestelle",
    "bstelle": "bestellen",
    "reserviere": "reservieren",
    "choschtet": "kostet",
    "chostet": "kostet",
    # nouns
    "bstellig": "bestellung",
    "bstellige": "bestellungen",
    "warechorb": "warenkorb",
    "chorb": "korb",
    "mönü": "menü",
    "charte": "karte",
    "priis": "preis",
    "persone": "personen",
    "lüt": "leute",
    "lüüt": "leute",
    "öffnigsziite": "öffnungszeiten",
    "abig": "abend",
    "morge": "morgen",
    # food
    "röschti": "rösti",
    "kafi": "kaffee",
    "gipfeli": "croissant",
    "güggeli": "hähnchen",
    "chäs": "käse",
    "brötli": "brötchen",
    "wurscht": "wurst",
    "härdöpfel": "kartoffeln",
    "herdöpfel": "kartoffeln",
    "rüebli": "karotten",
    "zmittag": "mittagessen",
    "znacht": "abendessen",
    "zmorge": "frühstück",
    "stange": "bier",
    # function words
    "öppis": "etwas",
    "nüt": "nichts",
    "nöd": "nicht",
    "nid": "nicht",
    "nei": "nein",
    "jo": "ja",
    "gärn": "gern",
    "gärne": "gerne",
    "dezue": "dazu",
    "dazue": "dazu",
    "uf": "auf",
    "vo": "von",
    "ohni": "ohne",
    "hüt": "heute",
    "morn": "morgen",
    "wievill": "wieviel",
    "wievil": "wieviel",
    "offe": "offen",
}

# Per-dialect overrides on top of the common table
SWISS_GERMAN_DIALECTS: Dict[str, Dict[str, str]] = {
    "ZH": {
        "gönd": "gehen",
        "chömed": "kommen",
        "gömmer": "gehen wir",
    },
    "BE": {
        "hei": "haben",
        "wei": "wollen",
        "chöi": "können",
        "gäbet": "gebt",
        "öpis": "etwas",
        "viu": "viel",
        "merci viu mau": "vielen dank",
        "mau": "mal",
        "gäu": "nicht wahr",
    },
    "BS": {
        "hän": "haben",
        "wän": "wollen",
        "gäll": "nicht wahr",
        "pfüdi": "tschüss",
    },
}

SWISS_FRENCH: Dict[str, str] = {
    "septante": "soixante-dix",
    "huitante": "quatre-vingts",
    "octante": "quatre-vingts",
    "nonante": "quatre-vingt-dix",
    "natel": "portable",
}

SWISS_ITALIAN: Dict[str, str] = {
    "natel": "cellulare",
    "azione": "offerta",
}

# (pattern, replacement) per language; the first matching language key wins
_BRAND = r"(?<!\w)eatech(?!\w)"
_CURRENCY = r"(?<!\w)(?:chf(?!\w)|fr\.)"

SUBSTITUTIONS: Dict[str, List[Tuple[str, str]]] = {
    "de-CH": [
        (_BRAND, "ietäch"),
        (_CURRENCY, " franke "),
        (r"€", " euro "),
        (r"%", " prozänt "),
        (r"&", " und "),
        (r"@", " ätt "),
    ],
    "de": [
        (_BRAND, "ieteck"),
        (_CURRENCY, " franken "),
        (r"€", " euro "),
        (r"%", " prozent "),
        (r"&", " und "),
        (r"@", " at "),
    ],
    "fr": [
        (_CURRENCY, " francs "),
        (r"€", " euros "),
        (r"%", " pour cent "),
        (r"&", " et "),
        (r"@", " arobase "),
    ],
    "it": [
        (_CURRENCY, " franchi "),
        (r"€", " euro "),
        (r"%", " percento "),
        (r"&", " e "),
        (r"@", " chiocciola "),
    ],
    "en": [
        (_CURRENCY, " swiss francs "),
        (r"€", " euros "),
        (r"%", " percent "),
        (r"&", " and "),
        (r"@", " at "),
    ],
}

_WHITESPACE = re.compile(r"\s+")
_SYMBOLS = re.compile(r"[^\w\s'\-.:]")
_LOOSE_SEPARATORS = re.compile(r"(?<!\d)[.:]|[.:](?!\d)")
_QUANTITY_TIMES = re.compile(r"(?<![\w.])(\d+)x(?!\w)")


def is_swiss_dialect(language: str) -> bool:
    return language in SWISS_LANGUAGES


def _family(language: str) -> str:
    return (language or "").split("-")[0].lower()


@lru_cache(maxsize=None)
def folding_table(language: str, dialect: Optional[str] = None) -> Dict[str, str]:
    """Folding table for a language (empty for non-Swiss languages)."""
    if language == "de-CH":
        table = dict(SWISS_GERMAN_COMMON)
        code = (dialect or DEFAULT_SWISS_GERMAN_DIALECT).upper()
        table.update(SWISS_GERMAN_DIALECTS.get(code, SWISS_GERMAN_DIALECTS[DEFAULT_SWISS_GERMAN_DIALECT]))
        return table
    if language == "fr-CH":
        return dict(SWISS_FRENCH)
    if language == "it-CH":
        return dict(SWISS_ITALIAN)
    return {}


@lru_cache(maxsize=None)
def _folding_regex(language: str, dialect: Optional[str]) -> Optional[Pattern[str]]:
    table = folding_table(language, dialect)
    if not table:
        return None
    # Longest keys first so phrases win over their leading word
    keys = sorted(table, key=len, reverse=True)
    alternation = "|".join(re.escape(k) for k in keys)
    return re.compile(rf"(?<![\w'])(?:{alternation})(?![\w'])")


@lru_cache(maxsize=None)
def _substitution_rules(language: str) -> List[Tuple[Pattern[str], str]]:
    rules = SUBSTITUTIONS.get(language) or SUBSTITUTIONS.get(_family(language)) or SUBSTITUTIONS["en"]
    return [(re.compile(p, re.IGNORECASE), r) for p, r in rules]


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def fold_dialect(text: str, language: str, dialect: Optional[str] = None) -> str:
    """Map dialect spellings to canonical tokens. Expects lowercased text."""
    regex = _folding_regex(language, dialect)
    if regex is None:
        return text
    table = folding_table(language, dialect)
    return regex.sub(lambda m: table[m.group(0)], text)


def substitute_terms(text: str, language: str) -> str:
    """Replace brand, currency shorthand and symbols with their spoken form."""
    for pattern, replacement in _substitution_rules(language):
        text = pattern.sub(replacement, text)
    return collapse_whitespace(text)


def strip_punctuation(text: str) -> str:
    text = _SYMBOLS.sub(" ", text)
    text = _LOOSE_SEPARATORS.sub(" ", text)
    text = _QUANTITY_TIMES.sub(r"\1 x", text)
    return collapse_whitespace(text)


def normalize(text: str, language: str, dialect: Optional[str] = None) -> str:
    """
    Canonicalize a transcript for pattern matching.

    >>> normalize("Füeg zwöi Pommes dezue!", "de-CH")
    'füge zwei pommes dazu'
    """
    if not text:
        return ""
    text = collapse_whitespace(unicodedata.normalize("NFC", text).lower())
    if is_swiss_dialect(language):
        text = fold_dialect(text, language, dialect)
    text = substitute_terms(text, language)
    return strip_punctuation(text)
