"""Canonical cache keys for proxied Quran API requests."""
from typing import Iterable, List, Optional, Tuple

TRANSLATION_KEYS = ("translations", "translation_ids", "translationId")
WORD_LANGUAGE_KEYS = ("word_translation_language", "language", "wordLang")

_SELECTOR_KEYS = frozenset(TRANSLATION_KEYS + WORD_LANGUAGE_KEYS)


def _first_present(params: List[Tuple[str, str]], aliases: Tuple[str, ...]) -> Optional[str]:
    # Alias order decides, not parameter order; an empty value still counts as present.
    for alias in aliases:
        for key, value in params:
            if key == alias:
                return value
    return None


def _is_int(token: str) -> bool:
    # ASCII digits with an optional leading minus.
    digits = token[1:] if token.startswith("-") else token
    return digits.isascii() and digits.isdigit()


def _translations(params: List[Tuple[str, str]]) -> str:
    raw = _first_present(params, TRANSLATION_KEYS)
    if not raw:
        return ""
    tokens = [t.strip() for t in raw.split(",") if t.strip()]
    if all(_is_int(t) for t in tokens):
        tokens.sort(key=int)
    else:
        tokens.sort()
    return ",".join(tokens)


def _word_language(params: List[Tuple[str, str]]) -> str:
    return (_first_present(params, WORD_LANGUAGE_KEYS) or "").lower()


def _other_params(params: List[Tuple[str, str]]) -> str:
    rest = [(k, v) for k, v in params if k not in _SELECTOR_KEYS]
    rest.sort(key=lambda kv: kv[0])
    return "&".join(f"{k}={v}" for k, v in rest)


def build_cache_key(pathname: str, params: Iterable[Tuple[str, str]]) -> str:
    """
    Map a request onto its canonical cache key.

    Translation ids and the word-translation language can be spelled through
    several aliases and in any order; all spellings of the same request share
    one key. ``params`` are decoded ``(key, value)`` pairs in request order.

        >>> build_cache_key("/api/v4/chapters", [("translation_ids", "21,20")])
        '/api/v4/chapters|translations=20,21|wordLang=|'
    """
    params = list(params)
    return (
        f"{pathname}"
        f"|translations={_translations(params)}"
        f"|wordLang={_word_language(params)}"
        f"|{_other_params(params)}"
    )
