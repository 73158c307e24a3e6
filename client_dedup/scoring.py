"""
Weighted confidence score between two client records.

Each field only counts toward the denominator when both records carry a
usable (normalised, non-empty) value, so missing data is never penalised.
The name always counts.
"""

from __future__ import annotations

from rapidfuzz.distance import Levenshtein

from client_dedup.config import Settings
from client_dedup.models import ClientRecord, Confidence, SimilarityResult
from client_dedup.normalize import (
    compact_name,
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_tax_id,
)

# ────────────────────────────────────────────────────────────────────
# Field weights (points available per field)
# ────────────────────────────────────────────────────────────────────
TAX_ID_WEIGHT = 40
EMAIL_WEIGHT = 35
PHONE_WEIGHT = 25
PHONE_SUFFIX_POINTS = 15
PHONE_SUFFIX_LEN = 8
NAME_WEIGHT = 20
NAME_PARTIAL_POINTS = 10
BIRTH_DATE_WEIGHT = 10

NAME_VERY_SIMILAR = 0.9
NAME_SIMILAR = 0.7

# Tier cut-offs: (min percentage, min raw points); either one qualifies
HIGH_CUTOFF = (70.0, 60)
MEDIUM_CUTOFF = (40.0, 30)


def edit_similarity(a: str, b: str) -> float:
    """1 - levenshtein / longest length; 1.0 for equal strings (including two empties)."""
    if a == b:
        return 1.0
    longest = max(len(a), len(b))
    return (longest - Levenshtein.distance(a, b)) / longest


def name_similarity(a: str | None, b: str | None) -> float:
    """Best of the particle-free and the compact name comparison."""
    return max(
        edit_similarity(normalize_name(a), normalize_name(b)),
        edit_similarity(compact_name(a), compact_name(b)),
    )


def confidence_for(score: float, points: int) -> Confidence:
    if score >= HIGH_CUTOFF[0] or points >= HIGH_CUTOFF[1]:
        return Confidence.HIGH
    if score >= MEDIUM_CUTOFF[0] or points >= MEDIUM_CUTOFF[1]:
        return Confidence.MEDIUM
    return Confidence.LOW


def score_pair(a: ClientRecord, b: ClientRecord, settings: Settings | None = None) -> SimilarityResult:
    """Score how likely two client records describe the same entity (0-100)."""
    settings = settings or Settings()
    points = 0
    max_points = 0
    reasons: list[str] = []

    tax_a, tax_b = normalize_tax_id(a.tax_id), normalize_tax_id(b.tax_id)
    if tax_a and tax_b:
        max_points += TAX_ID_WEIGHT
        if tax_a == tax_b:
            points += TAX_ID_WEIGHT
            reasons.append("identical tax ID")

    email_a, email_b = normalize_email(a.email), normalize_email(b.email)
    if email_a and email_b:
        max_points += EMAIL_WEIGHT
        if email_a == email_b:
            points += EMAIL_WEIGHT
            reasons.append("identical email")

    phone_a = normalize_phone(a.phone, settings.phone_country_codes, settings.phone_national_length)
    phone_b = normalize_phone(b.phone, settings.phone_country_codes, settings.phone_national_length)
    if phone_a and phone_b:
        max_points += PHONE_WEIGHT
        if phone_a == phone_b:
            points += PHONE_WEIGHT
            reasons.append("identical phone")
        elif (
            len(phone_a) >= PHONE_SUFFIX_LEN
            and len(phone_b) >= PHONE_SUFFIX_LEN
            and phone_a[-PHONE_SUFFIX_LEN:] == phone_b[-PHONE_SUFFIX_LEN:]
        ):
            points += PHONE_SUFFIX_POINTS
            reasons.append("similar number")

    max_points += NAME_WEIGHT
    similarity = name_similarity(a.name, b.name)
    if similarity >= NAME_VERY_SIMILAR:
        points += NAME_WEIGHT
        reasons.append("very similar name")
    elif similarity >= NAME_SIMILAR:
        points += NAME_PARTIAL_POINTS
        reasons.append("similar name")

    if a.birth_date and b.birth_date:
        max_points += BIRTH_DATE_WEIGHT
        if a.birth_date == b.birth_date:
            points += BIRTH_DATE_WEIGHT
            reasons.append("identical birth date")

    score = points / max_points * 100 if max_points else 0.0
    return SimilarityResult(score=score, confidence=confidence_for(score, points), reasons=tuple(reasons))
