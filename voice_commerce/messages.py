"""
Localized response catalogs.

Catalogs are YAML files in `locales/`, one per language family (`de`, `fr`,
`it`, `en`) plus regional overrides (`de-CH`). A lookup for `de-CH` tries
`de-CH`, then `de`, then `en`. Keys are dotted paths into the nested mapping,
e.g. "cart.added".
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml

from logging_setup import get_logger, Component

logger = get_logger(Component.EXECUTOR)

FALLBACK_LANGUAGE = "en"


def _get_locales_dir() -> Path:
    return Path(__file__).parent / "locales"


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    flat: Dict[str, str] = {}
    for key, value in data.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, prefix=f"{path}."))
        else:
            flat[path] = str(value)
    return flat


def _load_file(path: Path) -> Dict[str, str]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Locale file {path} must contain a mapping at top-level")
    return _flatten(data)


@lru_cache(maxsize=None)
def load_catalog(name: str) -> Dict[str, str]:
    """Load one catalog by file stem; an unknown name yields an empty catalog."""
    path = _get_locales_dir() / f"{name}.yaml"
    if not path.exists():
        return {}
    return _load_file(path)


def resolution_chain(language: str) -> List[str]:
    """
    Catalog names to try for a language code, most specific first.

    "de-CH" -> ["de-CH", "de", "en"]; "en-GB" -> ["en-GB", "en"]
    """
    chain: List[str] = []
    if language:
        chain.append(language)
        family = language.split("-")[0].lower()
        if family not in chain:
            chain.append(family)
    if FALLBACK_LANGUAGE not in chain:
        chain.append(FALLBACK_LANGUAGE)
    return chain


def get_message(key: str, language: str, **params: Any) -> str:
    """
    Return the localized text for `key`, formatted with `params`.

    Unknown keys return the key itself so a missing translation is visible
    rather than silent.
    """
    for name in resolution_chain(language):
        template = load_catalog(name).get(key)
        if template is not None:
            try:
                return template.format(**params)
            except (KeyError, IndexError) as e:
                logger.warning(
                    "Message template is missing a parameter",
                    key=key,
                    language=language,
                    error=str(e),
                )
                return template
    logger.warning("No message found for key", key=key, language=language)
    return key


def join_alternatives(options: List[str], language: str) -> str:
    """Join suggestion texts with the language's "or"."""
    return get_message("clarify.joiner", language).join(f'"{o}"' for o in options)
