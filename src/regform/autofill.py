# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Sample fill plans for previewing a detected form.

Values are obviously fake placeholders; nothing here reads real user data.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from . import Category, DetectionResult, FieldClassification

SAMPLE_VALUES: MappingProxyType[Category, str] = MappingProxyType(
    {
        Category.BUSINESS_NAME: "Sample Ventures LLC",
        Category.DBA: "Sample Coffee",
        Category.ENTITY_TYPE: "LLC",
        Category.EIN: "00-0000000",
        Category.SSN: "000-00-0000",
        Category.EMAIL: "owner@example.com",
        Category.PHONE: "(555) 010-0100",
        Category.ADDRESS: "100 Example Street",
        Category.CITY: "Springfield",
        Category.STATE: "DC",
        Category.ZIP_CODE: "20001",
        Category.REGISTERED_AGENT: "Sample Agent Services Inc.",
        Category.OWNER_NAME: "Alex Sample",
        Category.BUSINESS_PURPOSE: "Any lawful business purpose",
        Category.NAICS_CODE: "541511",
        Category.FORMATION_DATE: "2026-01-01",
        Category.CERTIFICATION: "checked",
    }
)

# option-text preferences for choice fields, tried in order
_OPTION_PREFERENCES: dict[Category, tuple[str, ...]] = {
    Category.ENTITY_TYPE: ("limited liability", "llc"),
    Category.STATE: ("district of columbia", "dc"),
}

_CHOICE_KINDS = frozenset({"select", "radio_group", "checkbox_group"})


@dataclass(frozen=True, slots=True)
class FillAction:
    node_id: int
    category: Category
    kind: str
    value: str
    label: str = ""


def _pick_option(item: FieldClassification, jurisdiction: str) -> str | None:
    options = item.field.options
    if not options:
        return None
    prefs = list(_OPTION_PREFERENCES.get(item.category, ()))
    if item.category is Category.STATE and len(jurisdiction) == 2:
        prefs.insert(0, jurisdiction.lower())
    for pref in prefs:
        for option in options:
            if option.lower() == pref or pref in option.lower().split(" ") or pref in option.lower():
                return option
    return options[0]


def sample_value(item: FieldClassification, jurisdiction: str = "") -> str | None:
    """Placeholder value for one field, or None when it should stay empty."""
    if item.category is Category.OTHER:
        return None
    if item.field.kind in _CHOICE_KINDS and item.category is not Category.CERTIFICATION:
        return _pick_option(item, jurisdiction)
    if item.category is Category.STATE and len(jurisdiction) == 2:
        return jurisdiction
    return SAMPLE_VALUES.get(item.category)


def build_fill_plan(result: DetectionResult, *, min_confidence: int = 60) -> tuple[FillAction, ...]:
    """Fill actions in document order for fields at or above *min_confidence*."""
    actions: list[FillAction] = []
    for item in sorted(result.iter_fields(), key=lambda c: c.field.node_id):
        if item.confidence < min_confidence:
            continue
        value = sample_value(item, result.jurisdiction)
        if value is None:
            continue
        actions.append(
            FillAction(
                node_id=item.field.node_id,
                category=item.category,
                kind=item.field.kind,
                value=value,
                label=item.field.display_name,
            )
        )
    return tuple(actions)
