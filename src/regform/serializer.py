# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""DetectionResult serialization: plain dicts and JSON.

``from_dict(to_dict(r)) == r`` for every result; tuples become lists on the
way out and tuples again on the way back.  Malformed input raises
``ProtocolError`` so transports can tell bad payloads from bugs.
"""

from __future__ import annotations

import json
from typing import Any

from . import Category, DetectionResult, FieldClassification, FieldDescriptor, Section
from .errors import ProtocolError


def _field_to_dict(item: FieldClassification) -> dict[str, Any]:
    f = item.field
    return {
        "category": item.category.value,
        "confidence": item.confidence,
        "matched_rules": list(item.matched_rules),
        "field": {
            "node_id": f.node_id,
            "kind": f.kind,
            "name": f.name,
            "element_id": f.element_id,
            "label": f.label,
            "placeholder": f.placeholder,
            "autocomplete": f.autocomplete,
            **({"nearby_text": list(f.nearby_text)} if f.nearby_text else {}),
            **({"options": list(f.options)} if f.options else {}),
            "member_ids": list(f.member_ids),
        },
    }


def to_dict(result: DetectionResult) -> dict[str, Any]:
    return {
        "page_instance_id": result.page_instance_id,
        "url": result.url,
        "jurisdiction": result.jurisdiction,
        "jurisdiction_prior": result.jurisdiction_prior,
        "confidence": result.confidence,
        "field_count": result.field_count,
        "timestamp": result.timestamp,
        "generation": result.generation,
        "sections": [
            {
                "header": s.header,
                "level": s.level,
                "header_node_id": s.header_node_id,
                "fields": [_field_to_dict(f) for f in s.fields],
            }
            for s in result.sections
        ],
        **({"meta": {"stage_ms": dict(result.stage_ms)}} if result.stage_ms else {}),
    }


def _field_from_dict(data: dict[str, Any]) -> FieldClassification:
    f = data["field"]
    descriptor = FieldDescriptor(
        node_id=int(f["node_id"]),
        kind=f["kind"],
        name=f.get("name", ""),
        element_id=f.get("element_id", ""),
        label=f.get("label", ""),
        placeholder=f.get("placeholder", ""),
        autocomplete=f.get("autocomplete", ""),
        nearby_text=tuple(f.get("nearby_text", ())),
        options=tuple(f.get("options", ())),
        member_ids=tuple(int(i) for i in f.get("member_ids", ())),
    )
    return FieldClassification(
        field=descriptor,
        category=Category(data["category"]),
        confidence=int(data["confidence"]),
        matched_rules=tuple(data.get("matched_rules", ())),
    )


def from_dict(data: dict[str, Any]) -> DetectionResult:
    """Rebuild a DetectionResult.

    Raises:
        ProtocolError: missing keys, wrong types, unknown categories or
            out-of-range confidences.
    """
    try:
        sections = tuple(
            Section(
                header=s["header"],
                level=int(s["level"]),
                fields=tuple(_field_from_dict(f) for f in s["fields"]),
                header_node_id=s.get("header_node_id"),
            )
            for s in data["sections"]
        )
        confidence = int(data["confidence"])
        if not 0 <= confidence <= 100:
            raise ValueError(f"confidence out of range: {confidence}")
        return DetectionResult(
            page_instance_id=data["page_instance_id"],
            url=data["url"],
            jurisdiction=data["jurisdiction"],
            jurisdiction_prior=int(data["jurisdiction_prior"]),
            confidence=confidence,
            sections=sections,
            field_count=int(data["field_count"]),
            timestamp=float(data["timestamp"]),
            generation=int(data["generation"]),
            stage_ms=dict(data.get("meta", {}).get("stage_ms", {})),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ProtocolError(f"invalid detection result payload: {exc}") from exc


def to_json(result: DetectionResult, indent: int | None = 2) -> str:
    return json.dumps(to_dict(result), ensure_ascii=False, indent=indent)


def from_json(text: str) -> DetectionResult:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError("detection result JSON must be an object")
    return from_dict(data)
