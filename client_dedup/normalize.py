"""
Canonical forms for the identity fields used in duplicate detection.

Every function here accepts ``None`` or arbitrary text, never raises, and is
idempotent: ``f(f(x)) == f(x)``.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

# Linking particles that vary freely between spellings of the same name
NAME_PARTICLES = frozenset({"da", "de", "do", "dos", "das", "e", "of", "the", "and"})

NON_WORD_RE = re.compile(r"[\W_]+")
NON_DIGIT_RE = re.compile(r"\D+")
WHITESPACE_RE = re.compile(r"\s+")

DEFAULT_COUNTRY_CODES = ("55",)
DEFAULT_NATIONAL_LENGTH = 11


def _fold(value: str) -> str:
    """Case-fold and strip diacritics."""
    # Compatibility forms like "ℌ" only become letters with a case after NFKD
    folded = unicodedata.normalize("NFKD", value).casefold()
    decomposed = unicodedata.normalize("NFKD", folded)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _name_tokens(value: str | None) -> list[str]:
    if not value:
        return []
    return NON_WORD_RE.sub(" ", _fold(str(value))).split()


def normalize_name(value: str | None) -> str:
    """Return a person/company name reduced to comparable tokens."""
    tokens = [t for t in _name_tokens(value) if t not in NAME_PARTICLES]
    return " ".join(tokens)


def compact_name(value: str | None) -> str:
    """Folded name with every separator removed and particles kept.

    Catches spellings that glue a particle to the surname ("DaSilva").
    """
    return "".join(_name_tokens(value))


def normalize_phone(
    value: str | None,
    country_codes: Iterable[str] = DEFAULT_COUNTRY_CODES,
    national_length: int = DEFAULT_NATIONAL_LENGTH,
) -> str:
    """Digits only, with a known country-code prefix dropped from overlong numbers."""
    if not value:
        return ""
    digits = NON_DIGIT_RE.sub("", str(value))
    if len(digits) <= national_length:
        return digits
    for code in country_codes:
        if code and digits.startswith(code):
            return digits[len(code):][-national_length:]
    return digits


def normalize_tax_id(value: str | None) -> str:
    if not value:
        return ""
    return NON_DIGIT_RE.sub("", str(value))


def normalize_email(value: str | None) -> str:
    if not value:
        return ""
    return str(value).strip().lower()


def normalize_text(value: object) -> str:
    """Generic comparison form for free-text attributes."""
    if value is None:
        return ""
    return WHITESPACE_RE.sub(" ", str(value).casefold()).strip()
