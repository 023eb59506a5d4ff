# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Visual section detection: find headers that really introduce fields.

Two passes over the snapshot in document order:

  Pass 1 – collect header candidates (semantic headings, or text elements
           whose visual prominence reaches the threshold) and validate each
           one: it needs ``min_fields`` field entries after it, before the
           next candidate and before a gap wider than ``max_gap_px`` opens
           without a field.
  Pass 2 – walk again; a validated header opens a section, every field entry
           joins the open section or the ungrouped section.

Misses are data, not errors: a page without usable headers yields a single
ungrouped section.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from . import FieldClassification, Section
from .config import SectionConfig
from .snapshot import ElementNode, PageSnapshot, collapse_ws

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = SectionConfig()

SEMANTIC_HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6", "legend"})

# Elements whose text is never a section header.
_NON_HEADER_TAGS = frozenset(
    {"label", "option", "optgroup", "select", "textarea", "input", "button", "a", "title", "small"}
)
_NON_HEADER_ANCESTORS = frozenset({"label", "select", "button", "a", "h1", "h2", "h3", "h4", "h5", "h6", "legend"})

_HEADER_CLASS_RE = re.compile(r"(^|[\s_-])(header|heading|title|section)", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Field-label heuristics
# ---------------------------------------------------------------------------

_FIELD_WORDS = frozenset(
    {
        "name", "first name", "last name", "middle name", "full name", "email", "email address", "e-mail",
        "phone", "phone number", "telephone", "address", "street", "street address", "city", "state", "zip",
        "zip code", "postal code", "country", "county", "date", "password", "username", "title", "suffix",
        "ein", "ssn", "fax", "website", "signature",
    }
)  # fmt: skip

_FIELD_LABEL_RES = (
    re.compile(r"[:*]\s*$"),
    re.compile(r"^(please\s+)?(enter|select|choose|type|provide)\s+(your|the|a|an)\b", re.IGNORECASE),
    re.compile(r"^(yes|no|n/?a|other|none)$", re.IGNORECASE),
    re.compile(r"^[\d\s.,()$%/-]+$"),
)

_GROUP_LABEL_RES = (
    re.compile(r"\?\s*$"),
    re.compile(r"^(what|which|is|are|do|does|did|has|have|will|would|select)\b", re.IGNORECASE),
    re.compile(r"^(entity|business|organi[sz]ation)\s+type$", re.IGNORECASE),
    re.compile(r"^type\s+of\s+(entity|business|organi[sz]ation)$", re.IGNORECASE),
)


def looks_like_field_label(text: str) -> bool:
    """``Email:``, ``Enter your name``, ``Yes``, ``12345``, a lone field word."""
    low = text.lower().strip()
    if low.rstrip(":* ") in _FIELD_WORDS:
        return True
    if len(low) < 20 and _FIELD_LABEL_RES[0].search(low):
        return True
    return any(rx.search(low) for rx in _FIELD_LABEL_RES[1:])


def looks_like_group_label(text: str) -> bool:
    """Questions and group captions (``What type of entity?``, ``Entity type``)."""
    return any(rx.search(text.strip()) for rx in _GROUP_LABEL_RES)


# ---------------------------------------------------------------------------
# Prominence
# ---------------------------------------------------------------------------


def prominence_score(node: ElementNode) -> int:
    """Visual prominence of a text element (0..8)."""
    style = node.style
    score = 0
    if style.font_size >= 20:
        score += 2
    elif style.font_size >= 17:
        score += 1
    if style.font_weight >= 600:
        score += 2
    if style.margin_top + style.margin_bottom >= 16:
        score += 1
    if style.text_transform == "uppercase":
        score += 1
    if style.is_block:
        score += 1
    if _HEADER_CLASS_RE.search(node.attr("class")):
        score += 1
    return score


def header_level(node: ElementNode) -> int:
    if node.tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
        return int(node.tag[1])
    if node.tag == "legend":
        return 2
    if node.attr("role") == "heading":
        try:
            return max(1, min(6, int(node.attr("aria-level"))))
        except ValueError:
            pass
    if node.style.font_size >= 24:
        return 1
    if node.style.font_size >= 20:
        return 2
    return 3


# ---------------------------------------------------------------------------
# Pass 1
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HeaderCandidate:
    node: ElementNode
    text: str
    semantic: bool
    level: int


def find_header_candidates(snapshot: PageSnapshot, config: SectionConfig = _DEFAULT_CONFIG) -> list[HeaderCandidate]:
    """Candidate headers in document order (not yet validated)."""
    candidates: list[HeaderCandidate] = []
    for node in snapshot.nodes:
        if node.style.hidden or node.tag in _NON_HEADER_TAGS:
            continue
        if snapshot.has_ancestor(node.node_id, _NON_HEADER_ANCESTORS):
            continue

        semantic = node.tag in SEMANTIC_HEADING_TAGS or node.attr("role") == "heading"
        if semantic:
            text = snapshot.text_content(node.node_id)
        elif node.text and prominence_score(node) >= config.prominence_threshold:
            text = node.text
        else:
            continue

        text = collapse_ws(text)
        if not config.min_header_len <= len(text) <= config.max_header_len:
            continue
        if looks_like_group_label(text):
            continue
        if not semantic and looks_like_field_label(text):
            continue
        if semantic and text.rstrip().endswith(":"):
            continue
        candidates.append(HeaderCandidate(node=node, text=text, semantic=semantic, level=header_level(node)))
    return candidates


def _scan_entries(
    snapshot: PageSnapshot,
    start: HeaderCandidate,
    candidate_ids: frozenset[int],
    entry_ids: frozenset[int],
    config: SectionConfig,
) -> Iterable[int]:
    """Yield entry node ids that belong under *start*, stopping at the cutoffs."""
    anchor = start.node.top
    for node in snapshot.nodes[start.node.node_id + 1 :]:
        if node.node_id in candidate_ids:
            return
        if node.node_id not in entry_ids:
            continue
        if node.top - anchor > config.max_gap_px:
            return
        anchor = max(anchor, node.top)
        yield node.node_id


def validate_headers(
    snapshot: PageSnapshot,
    candidates: list[HeaderCandidate],
    entry_ids: frozenset[int],
    config: SectionConfig = _DEFAULT_CONFIG,
) -> list[HeaderCandidate]:
    candidate_ids = frozenset(c.node.node_id for c in candidates)
    valid: list[HeaderCandidate] = []
    for cand in candidates:
        count = 0
        for _ in _scan_entries(snapshot, cand, candidate_ids, entry_ids, config):
            count += 1
            if count >= config.min_fields:
                break
        if count >= config.min_fields:
            valid.append(cand)
        else:
            logger.debug("Header rejected: %r (%d field(s) follow)", cand.text, count)
    return valid


# ---------------------------------------------------------------------------
# Pass 2
# ---------------------------------------------------------------------------


def detect_sections(
    snapshot: PageSnapshot,
    classifications: Iterable[FieldClassification],
    config: SectionConfig | None = None,
) -> tuple[Section, ...]:
    """Group classified field entries under validated headers.

    Sections come out in document order.  Each entry belongs to the most
    recent validated header before it; rejected candidates and vertical gaps
    do not close a section, they only matter while validating headers.  The
    ungrouped section (``header == ""``, level 0) holds the entries that come
    before the first validated header, so it is always first when present.
    """
    cfg = config or _DEFAULT_CONFIG
    by_node = {c.field.node_id: c for c in classifications}
    entry_ids = frozenset(by_node)

    candidates = find_header_candidates(snapshot, cfg)
    valid = validate_headers(snapshot, candidates, entry_ids, cfg)
    valid_by_node = {c.node.node_id: c for c in valid}

    ungrouped: list[FieldClassification] = []
    grouped: list[tuple[HeaderCandidate, list[FieldClassification]]] = []
    for node in snapshot.nodes:
        header = valid_by_node.get(node.node_id)
        if header is not None:
            grouped.append((header, []))
        elif node.node_id in entry_ids:
            members = grouped[-1][1] if grouped else ungrouped
            members.append(by_node[node.node_id])

    sections: list[Section] = []
    if ungrouped:
        sections.append(Section(header="", level=0, fields=tuple(ungrouped)))
    for header, members in grouped:
        sections.append(
            Section(header=header.text, level=header.level, fields=tuple(members), header_node_id=header.node.node_id)
        )

    logger.debug(
        "Sections: %d candidate(s), %d validated, %d ungrouped field(s)",
        len(candidates),
        len(valid),
        len(ungrouped),
    )
    return tuple(sections)
