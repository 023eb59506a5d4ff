# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Turn snapshot field elements into ``FieldDescriptor`` entries.

Label resolution order (first non-empty wins):
  1. ``aria-label``
  2. ``aria-labelledby`` (space-separated id list)
  3. ``<label for=...>``
  4. wrapping ``<label>``
  5. text right after a checkbox/radio
  6. closest preceding text

Radios sharing a ``name`` collapse into one ``radio_group`` entry at the
position of the first member.  Runs of adjacent checkboxes that sit within
``checkbox_proximity_px`` of each other collapse into a ``checkbox_group``.
"""

from __future__ import annotations

import logging

from . import FieldDescriptor
from .snapshot import ElementNode, PageSnapshot, collapse_ws

logger = logging.getLogger(__name__)

_LOOKBACK_NODES = 8
_LOOKAHEAD_NODES = 3
_MAX_NEARBY = 3
_MAX_LABEL_LEN = 150

_OPTION_TAGS = frozenset({"select", "option", "optgroup", "datalist"})
_GROUP_ROLES = frozenset({"radiogroup", "group"})


def _clip(text: str) -> str:
    return text[:_MAX_LABEL_LEN]


# ---------------------------------------------------------------------------
# Text lookups
# ---------------------------------------------------------------------------


def _text_nodes_before(snapshot: PageSnapshot, node_id: int, limit: int) -> list[ElementNode]:
    """Nodes with own text preceding *node_id*, closest first, stopping at another field."""
    found: list[ElementNode] = []
    scanned = 0
    for idx in range(node_id - 1, -1, -1):
        prev = snapshot.nodes[idx]
        if prev.is_field:
            break
        scanned += 1
        if scanned > limit:
            break
        if not prev.text or prev.style.hidden or prev.tag in _OPTION_TAGS:
            continue
        if snapshot.has_ancestor(idx, _OPTION_TAGS):
            continue
        found.append(prev)
    return found


def preceding_text(snapshot: PageSnapshot, node_id: int, *, exclude: frozenset[str] = frozenset()) -> str:
    for prev in _text_nodes_before(snapshot, node_id, _LOOKBACK_NODES):
        if prev.text not in exclude:
            return _clip(prev.text)
    return ""


def following_text(snapshot: PageSnapshot, node_id: int) -> str:
    end = min(len(snapshot.nodes), node_id + 1 + _LOOKAHEAD_NODES)
    for idx in range(node_id + 1, end):
        nxt = snapshot.nodes[idx]
        if nxt.is_field:
            break
        if nxt.text and not nxt.style.hidden:
            return _clip(nxt.text)
    return ""


def _legend_text(snapshot: PageSnapshot, node_id: int) -> str:
    for anc in snapshot.ancestors(node_id):
        if anc.tag == "fieldset":
            for child_id in snapshot.children(anc.node_id):
                if snapshot.nodes[child_id].tag == "legend":
                    return _clip(snapshot.text_content(child_id))
            return ""
        if anc.attr("role") in _GROUP_ROLES and anc.attr("aria-label"):
            return _clip(collapse_ws(anc.attr("aria-label")))
    return ""


def resolve_label(snapshot: PageSnapshot, node: ElementNode) -> str:
    """Best human-readable label for a single field element."""
    aria = collapse_ws(node.attr("aria-label"))
    if aria:
        return _clip(aria)

    labelledby = node.attr("aria-labelledby").split()
    if labelledby:
        parts = []
        for ref in labelledby:
            target = snapshot.by_element_id(ref)
            if target is not None:
                parts.append(snapshot.text_content(target.node_id))
        joined = collapse_ws(" ".join(parts))
        if joined:
            return _clip(joined)

    element_id = node.attr("id")
    if element_id:
        label = snapshot.label_for(element_id)
        if label is not None:
            text = snapshot.text_content(label.node_id)
            if text:
                return _clip(text)

    for anc in snapshot.ancestors(node.node_id):
        if anc.tag == "label":
            text = snapshot.text_content(anc.node_id)
            if text:
                return _clip(text)
            break

    if node.input_kind in ("checkbox", "radio"):
        text = following_text(snapshot, node.node_id)
        if text:
            return text

    return preceding_text(snapshot, node.node_id)


def _nearby_text(snapshot: PageSnapshot, node_id: int, label: str) -> tuple[str, ...]:
    texts: list[str] = []
    legend = _legend_text(snapshot, node_id)
    if legend and legend != label:
        texts.append(legend)
    for prev in _text_nodes_before(snapshot, node_id, _LOOKBACK_NODES):
        if len(texts) >= _MAX_NEARBY:
            break
        if prev.text != label and prev.text not in texts:
            texts.append(_clip(prev.text))
    return tuple(texts)


def _options(snapshot: PageSnapshot, node: ElementNode) -> tuple[str, ...]:
    if node.tag != "select":
        return ()
    options: list[str] = []
    stack = list(reversed(snapshot.children(node.node_id)))
    while stack:
        child = snapshot.nodes[stack.pop()]
        if child.tag == "option":
            text = snapshot.text_content(child.node_id)
            if text:
                options.append(text)
        else:
            stack.extend(reversed(snapshot.children(child.node_id)))
    return tuple(options)


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


def describe_field(snapshot: PageSnapshot, node: ElementNode) -> FieldDescriptor:
    label = resolve_label(snapshot, node)
    return FieldDescriptor(
        node_id=node.node_id,
        kind=node.input_kind,
        name=node.attr("name"),
        element_id=node.attr("id"),
        label=label,
        placeholder=collapse_ws(node.attr("placeholder")),
        autocomplete=node.attr("autocomplete"),
        nearby_text=_nearby_text(snapshot, node.node_id, label),
        options=_options(snapshot, node),
        member_ids=(node.node_id,),
    )


def _describe_group(snapshot: PageSnapshot, members: list[ElementNode], kind: str) -> FieldDescriptor:
    first = members[0]
    member_labels = [resolve_label(snapshot, m) for m in members]
    exclude = frozenset(member_labels)
    label = _legend_text(snapshot, first.node_id) or preceding_text(snapshot, first.node_id, exclude=exclude)
    nearby = tuple(t for t in _nearby_text(snapshot, first.node_id, label) if t not in exclude)
    return FieldDescriptor(
        node_id=first.node_id,
        kind=kind,
        name=first.attr("name"),
        element_id=first.attr("id"),
        label=label,
        placeholder="",
        autocomplete=first.attr("autocomplete"),
        nearby_text=nearby,
        options=tuple(t for t in member_labels if t),
        member_ids=tuple(m.node_id for m in members),
    )


def collect_field_entries(
    snapshot: PageSnapshot,
    *,
    checkbox_proximity_px: float = 60.0,
) -> tuple[FieldDescriptor, ...]:
    """All field entries of *snapshot* in document order, with groups collapsed."""
    fields = list(snapshot.field_nodes())

    radio_groups: dict[str, list[ElementNode]] = {}
    for node in fields:
        if node.input_kind == "radio" and node.attr("name"):
            radio_groups.setdefault(node.attr("name"), []).append(node)

    entries: list[FieldDescriptor] = []
    checkbox_run: list[ElementNode] = []

    def flush_checkboxes() -> None:
        if len(checkbox_run) >= 2:
            entries.append(_describe_group(snapshot, checkbox_run, "checkbox_group"))
        elif checkbox_run:
            entries.append(describe_field(snapshot, checkbox_run[0]))
        checkbox_run.clear()

    for node in fields:
        kind = node.input_kind
        if kind == "checkbox":
            if checkbox_run and node.top - checkbox_run[-1].top > checkbox_proximity_px:
                flush_checkboxes()
            checkbox_run.append(node)
            continue
        flush_checkboxes()

        if kind == "radio" and node.attr("name"):
            members = radio_groups[node.attr("name")]
            if members[0].node_id != node.node_id:
                continue  # absorbed into the group entry
            if len(members) >= 2:
                entries.append(_describe_group(snapshot, members, "radio_group"))
                continue
        entries.append(describe_field(snapshot, node))

    flush_checkboxes()
    logger.debug("Collected %d field entries from %d field elements", len(entries), len(fields))
    return tuple(entries)
