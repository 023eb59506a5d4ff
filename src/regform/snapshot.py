# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page snapshots: a flat, document-ordered element list with layout hints.

A ``PageSnapshot`` is the only view of the page the detection engine sees.
Elements are addressed by ``node_id`` (their document-order index) and never
by live DOM references, so a snapshot is safe to hold across await points.

Two producers:
  * ``parse_html()``  – static HTML via lxml.  Styles come from tag defaults,
    inheritance and inline ``style=""``; vertical positions are estimated.
  * ``regform.live.capture_snapshot()`` – Playwright, with computed styles and
    measured bounding boxes.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from functools import cached_property
from types import MappingProxyType

import lxml.html
from lxml import etree

from .errors import SnapshotError

logger = logging.getLogger(__name__)

MAX_NODES = 5000
MAX_TEXT_LEN = 200

FIELD_TAGS = frozenset({"input", "select", "textarea"})

# input types that are not data-entry fields
_NON_FIELD_INPUT_TYPES = frozenset({"hidden", "submit", "button", "reset", "image"})

_SKIP_TAGS = frozenset({"script", "style", "noscript", "template", "svg", "head", "meta", "link", "iframe"})

BLOCK_DISPLAYS = frozenset({"block", "flex", "grid", "list-item", "table", "flow-root", "table-caption"})

_BLOCK_TAGS = frozenset(
    {
        "address", "article", "aside", "blockquote", "body", "dd", "details", "dialog", "div", "dl", "dt",
        "fieldset", "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5", "h6", "header",
        "hr", "legend", "li", "main", "nav", "ol", "p", "pre", "section", "summary", "table", "tr", "ul",
    }
)  # fmt: skip

# tag -> (font_size px, font_weight, vertical margin px)
_TAG_DEFAULTS: dict[str, tuple[float | None, int | None, float]] = {
    "h1": (32.0, 700, 21.4),
    "h2": (24.0, 700, 19.9),
    "h3": (18.7, 700, 18.7),
    "h4": (16.0, 700, 21.3),
    "h5": (13.3, 700, 22.2),
    "h6": (10.7, 700, 25.0),
    "p": (None, None, 16.0),
    "legend": (None, None, 0.0),
    "strong": (None, 700, 0.0),
    "b": (None, 700, 0.0),
    "th": (None, 700, 0.0),
    "small": (13.3, None, 0.0),
}

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NodeStyle:
    """The subset of computed style the section detector needs."""

    font_size: float = 16.0
    font_weight: int = 400
    margin_top: float = 0.0
    margin_bottom: float = 0.0
    text_transform: str = "none"
    display: str = "inline"
    hidden: bool = False

    @property
    def is_block(self) -> bool:
        return self.display in BLOCK_DISPLAYS


@dataclass(frozen=True, slots=True)
class ElementNode:
    """One element of the page, in document order."""

    node_id: int
    tag: str
    parent_id: int | None
    depth: int
    text: str = ""  # own (direct) text only, whitespace-collapsed
    attrs: Mapping[str, str] = field(default_factory=dict)
    style: NodeStyle = field(default_factory=NodeStyle)
    top: float = 0.0  # px from the top of the document

    def attr(self, name: str, default: str = "") -> str:
        return self.attrs.get(name, default)

    @property
    def input_kind(self) -> str:
        """Normalized kind for field elements (``""`` for non-fields)."""
        if self.tag == "select":
            return "select"
        if self.tag == "textarea":
            return "textarea"
        if self.tag == "input":
            return (self.attr("type") or "text").lower()
        return ""

    @property
    def is_field(self) -> bool:
        if self.tag not in FIELD_TAGS or self.style.hidden:
            return False
        if self.tag == "input" and self.input_kind in _NON_FIELD_INPUT_TYPES:
            return False
        return "hidden" not in self.attrs and self.attr("aria-hidden").lower() != "true"


@dataclass(frozen=True)
class PageSnapshot:
    """Immutable, document-ordered element list for one detection pass."""

    url: str
    title: str
    nodes: tuple[ElementNode, ...]

    def __post_init__(self) -> None:
        for index, node in enumerate(self.nodes):
            if node.node_id != index:
                raise SnapshotError(f"node_id {node.node_id} at position {index}: ids must equal document order")

    @cached_property
    def _children(self) -> Mapping[int, tuple[int, ...]]:
        children: dict[int, list[int]] = {}
        for node in self.nodes:
            if node.parent_id is not None:
                children.setdefault(node.parent_id, []).append(node.node_id)
        return MappingProxyType({k: tuple(v) for k, v in children.items()})

    @cached_property
    def _by_element_id(self) -> Mapping[str, int]:
        index: dict[str, int] = {}
        for node in self.nodes:
            el_id = node.attr("id")
            if el_id and el_id not in index:
                index[el_id] = node.node_id
        return MappingProxyType(index)

    @cached_property
    def _label_for(self) -> Mapping[str, int]:
        index: dict[str, int] = {}
        for node in self.nodes:
            target = node.attr("for")
            if node.tag == "label" and target and target not in index:
                index[target] = node.node_id
        return MappingProxyType(index)

    # -- Navigation --

    def children(self, node_id: int) -> tuple[int, ...]:
        return self._children.get(node_id, ())

    def ancestors(self, node_id: int) -> Iterator[ElementNode]:
        parent = self.nodes[node_id].parent_id
        while parent is not None:
            node = self.nodes[parent]
            yield node
            parent = node.parent_id

    def has_ancestor(self, node_id: int, tags: frozenset[str]) -> bool:
        return any(a.tag in tags for a in self.ancestors(node_id))

    def by_element_id(self, element_id: str) -> ElementNode | None:
        idx = self._by_element_id.get(element_id)
        return None if idx is None else self.nodes[idx]

    def label_for(self, element_id: str) -> ElementNode | None:
        idx = self._label_for.get(element_id)
        return None if idx is None else self.nodes[idx]

    def text_content(self, node_id: int, *, skip_fields: bool = True) -> str:
        """Own text of *node_id* and all its descendants, whitespace-collapsed."""
        parts: list[str] = []
        stack = [node_id]
        while stack:
            current = self.nodes[stack.pop()]
            if skip_fields and current.tag in FIELD_TAGS:
                continue
            if current.text:
                parts.append(current.text)
            stack.extend(reversed(self.children(current.node_id)))
        return collapse_ws(" ".join(parts))

    def field_nodes(self) -> Iterator[ElementNode]:
        return (n for n in self.nodes if n.is_field)


# ---------------------------------------------------------------------------
# Text + style helpers
# ---------------------------------------------------------------------------

_WS_RE = re.compile(r"\s+")


def collapse_ws(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


_LENGTH_RE = re.compile(r"^\s*(-?[\d.]+)\s*(px|em|rem|pt|%)?\s*$", re.IGNORECASE)


def parse_length(value: str, base: float = 16.0) -> float | None:
    """Convert a CSS length to px. Returns None when it cannot be interpreted."""
    m = _LENGTH_RE.match(value or "")
    if m is None:
        return None
    try:
        number = float(m.group(1))
    except ValueError:
        return None
    unit = (m.group(2) or "px").lower()
    if unit in ("em", "%"):
        return number * base / (100.0 if unit == "%" else 1.0)
    if unit == "rem":
        return number * 16.0
    if unit == "pt":
        return number * 4.0 / 3.0
    return number


def parse_font_weight(value: str) -> int | None:
    value = (value or "").strip().lower()
    if value in ("bold", "bolder"):
        return 700
    if value in ("normal", "lighter"):
        return 400
    try:
        return int(float(value))
    except ValueError:
        return None


def parse_inline_style(style: str) -> dict[str, str]:
    """``"font-size: 20px; FONT-WEIGHT:bold"`` → ``{"font-size": "20px", "font-weight": "bold"}``."""
    declarations: dict[str, str] = {}
    for chunk in (style or "").split(";"):
        if ":" not in chunk:
            continue
        prop, _, value = chunk.partition(":")
        prop = prop.strip().lower()
        if prop:
            declarations[prop] = value.replace("!important", "").strip()
    return declarations


def _margins(decls: dict[str, str], font_size: float, default: float) -> tuple[float, float]:
    top = bottom = default
    if "margin" in decls:
        parts = decls["margin"].split()
        if parts:
            first = parse_length(parts[0], font_size)
            third = parse_length(parts[2], font_size) if len(parts) >= 3 else first
            top = first if first is not None else top
            bottom = third if third is not None else bottom
    if "margin-top" in decls:
        top = parse_length(decls["margin-top"], font_size) or 0.0
    if "margin-bottom" in decls:
        bottom = parse_length(decls["margin-bottom"], font_size) or 0.0
    return top, bottom


def _resolve_style(tag: str, attrs: Mapping[str, str], parent: NodeStyle | None) -> NodeStyle:
    inherited_size = parent.font_size if parent else 16.0
    inherited_weight = parent.font_weight if parent else 400
    inherited_transform = parent.text_transform if parent else "none"

    default_size, default_weight, default_margin = _TAG_DEFAULTS.get(tag, (None, None, 0.0))
    font_size = default_size if default_size is not None else inherited_size
    font_weight = default_weight if default_weight is not None else inherited_weight
    text_transform = inherited_transform
    display = "block" if tag in _BLOCK_TAGS else "inline"
    hidden = bool(parent and parent.hidden)

    decls = parse_inline_style(attrs.get("style", ""))
    if "font-size" in decls:
        font_size = parse_length(decls["font-size"], inherited_size) or font_size
    if "font-weight" in decls:
        font_weight = parse_font_weight(decls["font-weight"]) or font_weight
    if "text-transform" in decls:
        text_transform = decls["text-transform"].lower()
    if "display" in decls:
        display = decls["display"].lower()
    if display == "none" or decls.get("visibility", "").lower() == "hidden":
        hidden = True

    margin_top, margin_bottom = _margins(decls, font_size, default_margin)
    return NodeStyle(
        font_size=round(font_size, 2),
        font_weight=font_weight,
        margin_top=round(margin_top, 2),
        margin_bottom=round(margin_bottom, 2),
        text_transform=text_transform,
        display=display,
        hidden=hidden,
    )


# ---------------------------------------------------------------------------
# Static HTML → snapshot
# ---------------------------------------------------------------------------

_FIELD_HEIGHT = 36.0
_TOGGLE_HEIGHT = 20.0
_LINE_HEIGHT_FACTOR = 1.4


def _own_text(el: etree._Element) -> str:
    parts = [el.text or ""]
    parts.extend(child.tail or "" for child in el)
    return collapse_ws(" ".join(parts))[:MAX_TEXT_LEN]


def _estimated_height(tag: str, kind: str, text: str, style: NodeStyle) -> float:
    if tag in FIELD_TAGS:
        return _TOGGLE_HEIGHT if kind in ("radio", "checkbox") else _FIELD_HEIGHT
    if text:
        return style.font_size * _LINE_HEIGHT_FACTOR
    return 0.0


def parse_html(html: str, url: str = "") -> PageSnapshot:
    """Parse static HTML into a snapshot with estimated vertical layout.

    Raises:
        SnapshotError: the document cannot be parsed or has no body.
    """
    if not html or not html.strip():
        raise SnapshotError("empty HTML document")
    try:
        doc = lxml.html.document_fromstring(html)
    except (etree.ParserError, ValueError) as exc:
        raise SnapshotError(f"HTML parse failed: {exc}") from exc

    title_el = doc.find(".//title")
    title = collapse_ws(title_el.text_content()) if title_el is not None else ""
    body = doc.find("body")
    if body is None:
        raise SnapshotError("HTML document has no <body>")

    nodes: list[ElementNode] = []
    cursor = 0.0
    # (element, parent_id, depth, parent_style, inside_select)
    stack: list[tuple[etree._Element, int | None, int, NodeStyle | None, bool]] = [(body, None, 0, None, False)]

    while stack:
        el, parent_id, depth, parent_style, inside_select = stack.pop()
        if not isinstance(el.tag, str):
            continue  # comments, processing instructions
        tag = el.tag.lower()
        if tag in _SKIP_TAGS:
            continue
        if len(nodes) >= MAX_NODES:
            logger.warning("Snapshot truncated at %d nodes: %s", MAX_NODES, url)
            break

        attrs = {k.lower(): (v or "") for k, v in el.attrib.items()}
        style = _resolve_style(tag, attrs, parent_style)
        text = _own_text(el)
        kind = (attrs.get("type") or "text").lower() if tag == "input" else tag

        if not inside_select and not style.hidden:
            cursor += style.margin_top if style.is_block else 0.0
        node = ElementNode(
            node_id=len(nodes),
            tag=tag,
            parent_id=parent_id,
            depth=depth,
            text=text,
            attrs=MappingProxyType(attrs),
            style=style,
            top=round(cursor, 1),
        )
        nodes.append(node)
        if not inside_select and not style.hidden:
            cursor += _estimated_height(tag, kind, text, style)
            if style.is_block:
                cursor += style.margin_bottom

        child_in_select = inside_select or tag in ("select", "datalist")
        for child in reversed(el):
            stack.append((child, node.node_id, depth + 1, style, child_in_select))

    logger.debug("Parsed static snapshot: url=%s nodes=%d", url, len(nodes))
    return PageSnapshot(url=url, title=title, nodes=tuple(nodes))
