# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""regform: business-registration form detection for government web pages.

Turns a page snapshot into a structured detection result containing:
- jurisdiction: the government entity inferred from the URL
- sections: validated visual sections, each holding classified form fields
- confidence: 0-100 likelihood that the page hosts a registration form
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Category(StrEnum):
    """Fixed enumeration of semantic field categories."""

    BUSINESS_NAME = "business_name"
    DBA = "dba"
    ENTITY_TYPE = "entity_type"
    EIN = "ein"
    SSN = "ssn"
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"
    CITY = "city"
    STATE = "state"
    ZIP_CODE = "zip_code"
    REGISTERED_AGENT = "registered_agent"
    OWNER_NAME = "owner_name"
    BUSINESS_PURPOSE = "business_purpose"
    NAICS_CODE = "naics_code"
    FORMATION_DATE = "formation_date"
    CERTIFICATION = "certification"
    OTHER = "other"


UNKNOWN_JURISDICTION = "UNKNOWN"


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """Immutable snapshot of one candidate input (or collapsed input group)."""

    node_id: int  # synthetic document-order index, never a live element
    kind: str  # text, email, tel, select, textarea, radio_group, checkbox_group, ...
    name: str = ""
    element_id: str = ""
    label: str = ""
    placeholder: str = ""
    autocomplete: str = ""
    nearby_text: tuple[str, ...] = ()
    options: tuple[str, ...] = ()
    member_ids: tuple[int, ...] = ()  # node ids collapsed into this entry

    @property
    def display_name(self) -> str:
        return self.label or self.placeholder or self.name or self.element_id or f"#{self.node_id}"


@dataclass(frozen=True, slots=True)
class FieldClassification:
    """A descriptor plus the category it was assigned."""

    field: FieldDescriptor
    category: Category
    confidence: int  # 0-100
    matched_rules: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be within 0..100, got {self.confidence}")


@dataclass(frozen=True, slots=True)
class Section:
    """Validated visual section; ``header == ""`` marks the ungrouped section."""

    header: str
    level: int
    fields: tuple[FieldClassification, ...] = ()
    header_node_id: int | None = None

    @property
    def is_ungrouped(self) -> bool:
        return self.header_node_id is None


@dataclass(frozen=True)
class DetectionResult:
    """Settled outcome of one detection pass for a page instance."""

    page_instance_id: str
    url: str
    jurisdiction: str
    jurisdiction_prior: int
    confidence: int  # 0-100
    sections: tuple[Section, ...]
    field_count: int
    timestamp: float  # wall clock, seconds
    generation: int
    stage_ms: dict[str, float] = field(default_factory=dict, compare=False)

    @property
    def is_form_detected(self) -> bool:
        return self.field_count > 0 and self.confidence > 0

    def iter_fields(self):
        for section in self.sections:
            yield from section.fields

    def __str__(self) -> str:
        return (
            f"DetectionResult(gen={self.generation}, jurisdiction={self.jurisdiction}, "
            f"confidence={self.confidence}, sections={len(self.sections)}, fields={self.field_count})"
        )


def confidence_label(confidence: int) -> str:
    """Presentation-only severity bucket for a confidence score."""
    if confidence >= 80:
        return "high"
    if confidence >= 60:
        return "medium"
    return "low"
