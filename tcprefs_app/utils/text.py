# tcprefs_app/utils/text.py

"""Ordering and search helpers shared by the importer, comparison and export code."""

import locale
from typing import Iterable


def locale_sort_key(value: str) -> tuple[str, str]:
    """
    Locale-aware ascending sort key.

    Collates the casefolded text with the process locale and falls back to
    the raw text so the order is total.
    """
    return (locale.strxfrm(value.casefold()), value)


def search_tokens(text: str | None) -> list[str]:
    return [token.lower() for token in (text or "").split() if token]


def matches_all_tokens(tokens: Iterable[str], haystack: Iterable[str | None]) -> bool:
    """True when every token occurs (case-insensitively) in the joined haystack."""
    joined = " ".join(part for part in haystack if part).lower()
    return all(token in joined for token in tokens)
