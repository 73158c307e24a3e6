"""
Per-attribute survival plan for merging a secondary client into a primary.

Primary values win by default, gaps are filled from the secondary, and real
conflicts are surfaced as ``manual`` decisions for the operator. Swapping
roles means planning again with the arguments exchanged; the plan is not
symmetric.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Sequence

from client_dedup.config import Settings
from client_dedup.errors import UnresolvedDecisionError
from client_dedup.models import ClientRecord, Decision, FieldDecision, FieldPreview, FieldStatus
from client_dedup.normalize import (
    compact_name,
    normalize_email,
    normalize_phone,
    normalize_tax_id,
    normalize_text,
)

MERGEABLE_FIELDS = (
    "name",
    "email",
    "phone",
    "tax_id",
    "birth_date",
    "marital_status",
    "profession",
    "postal_code",
    "address",
    "address_number",
    "complement",
    "neighborhood",
    "city",
    "state",
    "notes",
)


def _comparators(settings: Settings) -> Dict[str, Callable[[Any], Any]]:
    return {
        "name": compact_name,
        "email": normalize_email,
        "phone": lambda v: normalize_phone(v, settings.phone_country_codes, settings.phone_national_length),
        "tax_id": normalize_tax_id,
        "postal_code": normalize_tax_id,
        "birth_date": lambda v: v,
    }


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def plan_fields(
    primary: ClientRecord,
    secondary: ClientRecord,
    settings: Settings | None = None,
) -> List[FieldDecision]:
    settings = settings or Settings()
    comparators = _comparators(settings)
    decisions: List[FieldDecision] = []

    for name in MERGEABLE_FIELDS:
        ours = getattr(primary, name)
        theirs = getattr(secondary, name)
        decision = FieldDecision(field=name, decision=Decision.KEEP_PRIMARY, primary_value=ours, secondary_value=theirs)

        if is_empty(ours):
            if not is_empty(theirs):
                decision.decision = Decision.TAKE_SECONDARY
        elif not is_empty(theirs):
            compare = comparators.get(name, normalize_text)
            if compare(ours) != compare(theirs):
                decision.decision = Decision.MANUAL
                if name == "notes":
                    decision.resolved_value = f"{ours}{settings.notes_separator}{theirs}"

        decisions.append(decision)
    return decisions


def override(
    decisions: Sequence[FieldDecision],
    field: str,
    decision: Decision,
    value: Any = None,
) -> FieldDecision:
    """Operator override of one field; ``manual`` needs the chosen value."""
    for item in decisions:
        if item.field != field:
            continue
        if decision is Decision.MANUAL:
            if value is None:
                raise ValueError(f"A manual decision for {field!r} needs a value")
            item.resolve(value)
        else:
            item.decision = decision
            item.resolved_value = None
        return item
    raise KeyError(field)


def unresolved_fields(decisions: Sequence[FieldDecision]) -> List[str]:
    return [d.field for d in decisions if not d.resolved]


def merged_values(decisions: Sequence[FieldDecision]) -> Dict[str, Any]:
    """Attribute updates to apply to the primary client."""
    pending = unresolved_fields(decisions)
    if pending:
        raise UnresolvedDecisionError(pending)

    values: Dict[str, Any] = {}
    for d in decisions:
        if d.decision is Decision.TAKE_SECONDARY:
            new_value = d.secondary_value
        elif d.decision is Decision.MANUAL:
            new_value = d.resolved_value
        else:
            continue
        if new_value != d.primary_value:
            values[d.field] = new_value
    return values


def preview_merge(decisions: Sequence[FieldDecision]) -> List[FieldPreview]:
    """Before/after view of the primary; unresolved manual fields show the current value."""
    previews: List[FieldPreview] = []
    for d in decisions:
        if d.decision is Decision.TAKE_SECONDARY:
            merged = d.secondary_value
        elif d.decision is Decision.MANUAL and d.resolved_value is not None:
            merged = d.resolved_value
        else:
            merged = d.primary_value

        if is_empty(d.primary_value) and not is_empty(merged):
            status = FieldStatus.ADDED
        elif not is_empty(d.primary_value) and merged != d.primary_value:
            status = FieldStatus.CHANGED
        else:
            status = FieldStatus.UNCHANGED
        previews.append(FieldPreview(field=d.field, current=d.primary_value, merged=merged, status=status))
    return previews
