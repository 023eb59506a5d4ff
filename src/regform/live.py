# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Live pages via Playwright: snapshots, form fingerprints and a watcher.

- ``capture_snapshot(page)``  – one ``page.evaluate`` walk producing a
  ``PageSnapshot`` with computed styles and measured positions.
- ``capture_form_fingerprint`` / ``detect_form_changes`` – cheap structural
  fingerprint compared before/after, to notice forms that render late or
  swap steps without a URL change.
- ``watch_page()`` – polling loop feeding a ``PageInstance``: URL change →
  navigation intent, major form change → new detection pass.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .errors import SnapshotError
from .snapshot import MAX_NODES, ElementNode, NodeStyle, PageSnapshot

if TYPE_CHECKING:
    from .orchestrator import SnapshotSource
    from .page_instance import PageInstance

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# JS: DOM walk with computed style
# ---------------------------------------------------------------------------

_SNAPSHOT_JS = """(maxNodes) => {
  const SKIP = new Set(['SCRIPT','STYLE','NOSCRIPT','TEMPLATE','SVG','HEAD','META','LINK','IFRAME']);
  const ATTRS = ['id','name','type','for','placeholder','aria-label','aria-labelledby','aria-hidden',
    'aria-level','autocomplete','role','class','hidden','style'];
  const nodes = [];
  const walk = (el, parent, depth, parentHidden) => {
    if (nodes.length >= maxNodes || SKIP.has(el.tagName.toUpperCase())) return;
    const cs = getComputedStyle(el);
    const hidden = parentHidden || cs.display === 'none' || cs.visibility === 'hidden';
    let text = '';
    for (const c of el.childNodes) if (c.nodeType === 3) text += ' ' + c.textContent;
    const attrs = {};
    for (const a of ATTRS) { const v = el.getAttribute(a); if (v !== null) attrs[a] = v; }
    const idx = nodes.length;
    nodes.push({
      tag: el.tagName.toLowerCase(), parent, depth, attrs, hidden,
      text: text.replace(/\\s+/g, ' ').trim().slice(0, 200),
      fontSize: parseFloat(cs.fontSize) || 16,
      fontWeight: parseInt(cs.fontWeight, 10) || 400,
      marginTop: parseFloat(cs.marginTop) || 0,
      marginBottom: parseFloat(cs.marginBottom) || 0,
      textTransform: cs.textTransform || 'none',
      display: cs.display || 'inline',
      top: el.getBoundingClientRect().top + window.scrollY,
    });
    for (const child of el.children) walk(child, idx, depth + 1, hidden);
  };
  if (document.body) walk(document.body, null, 0, false);
  return {url: location.href, title: document.title || '', nodes};
}"""


def _node_from_raw(index: int, raw: dict) -> ElementNode:
    style = NodeStyle(
        font_size=float(raw.get("fontSize", 16.0)),
        font_weight=int(raw.get("fontWeight", 400)),
        margin_top=float(raw.get("marginTop", 0.0)),
        margin_bottom=float(raw.get("marginBottom", 0.0)),
        text_transform=str(raw.get("textTransform", "none")),
        display=str(raw.get("display", "inline")),
        hidden=bool(raw.get("hidden", False)),
    )
    attrs = {str(k).lower(): str(v) for k, v in (raw.get("attrs") or {}).items()}
    return ElementNode(
        node_id=index,
        tag=str(raw.get("tag", "")),
        parent_id=raw.get("parent"),
        depth=int(raw.get("depth", 0)),
        text=str(raw.get("text", "")),
        attrs=MappingProxyType(attrs),
        style=style,
        top=round(float(raw.get("top", 0.0)), 1),
    )


async def capture_snapshot(page: Page, *, max_nodes: int = MAX_NODES) -> PageSnapshot:
    """Snapshot the live DOM of *page*.

    Raises:
        SnapshotError: evaluation failed (page closed, navigation mid-walk,
            CSP blocking evaluation) or returned garbage.
    """
    try:
        raw = await page.evaluate(_SNAPSHOT_JS, max_nodes)
    except PlaywrightError as exc:
        raise SnapshotError(f"live snapshot failed: {exc}") from exc
    if not isinstance(raw, dict) or not isinstance(raw.get("nodes"), list):
        raise SnapshotError("live snapshot returned an unexpected shape")
    try:
        nodes = tuple(_node_from_raw(i, n) for i, n in enumerate(raw["nodes"]))
    except (TypeError, ValueError) as exc:
        raise SnapshotError(f"live snapshot node malformed: {exc}") from exc
    logger.debug("Live snapshot: url=%s nodes=%d", raw.get("url"), len(nodes))
    return PageSnapshot(url=str(raw.get("url") or page.url), title=str(raw.get("title", "")), nodes=nodes)


def snapshot_source(page: Page) -> SnapshotSource:
    """Bind *page* into the zero-argument source the orchestrator calls."""

    async def _capture() -> PageSnapshot:
        return await capture_snapshot(page)

    return _capture


# ---------------------------------------------------------------------------
# Form fingerprint
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FormFingerprint:
    """Lightweight structural summary of the forms on a page."""

    field_counts: dict[str, int]
    total_fields: int
    form_count: int
    heading_count: int
    title: str
    url: str


@dataclass
class FormChangeVerdict:
    changed: bool
    reasons: list[str] = field(default_factory=list)
    severity: str = "none"  # "none" | "minor" | "major"
    navigated: bool = False


_FORM_FINGERPRINT_JS = """(() => {
  const els = document.querySelectorAll(
    'input:not([type=hidden]):not([type=submit]):not([type=button]),select,textarea'
  );
  const counts = {};
  for (const el of els) {
    const key = el.tagName === 'INPUT' ? (el.getAttribute('type') || 'text').toLowerCase()
                                        : el.tagName.toLowerCase();
    counts[key] = (counts[key] || 0) + 1;
  }
  return {
    fieldCounts: counts,
    totalFields: els.length,
    formCount: document.forms.length,
    headingCount: document.querySelectorAll('h1,h2,h3,h4,h5,h6,legend,[role=heading]').length,
    title: document.title || '',
    url: location.href
  };
})()"""


async def capture_form_fingerprint(page: Page) -> FormFingerprint | None:
    """Capture a form fingerprint. Returns None on any failure."""
    try:
        raw = await page.evaluate(_FORM_FINGERPRINT_JS)
    except PlaywrightError:
        logger.debug("Form fingerprint capture failed", exc_info=True)
        return None
    if not isinstance(raw, dict):
        return None
    return FormFingerprint(
        field_counts=raw.get("fieldCounts", {}),
        total_fields=raw.get("totalFields", 0),
        form_count=raw.get("formCount", 0),
        heading_count=raw.get("headingCount", 0),
        title=raw.get("title", ""),
        url=raw.get("url", ""),
    )


_MAJOR_ABS = 2
_MAJOR_PCT = 0.20


def _strip_fragment(url: str) -> str:
    return url.split("#", 1)[0]


def detect_form_changes(before: FormFingerprint | None, after: FormFingerprint | None) -> FormChangeVerdict:
    """Compare two fingerprints. None inputs → no change (graceful skip)."""
    if before is None or after is None:
        return FormChangeVerdict(changed=False)

    if _strip_fragment(before.url) != _strip_fragment(after.url):
        return FormChangeVerdict(changed=True, reasons=["url changed"], severity="major", navigated=True)

    reasons: list[str] = []
    if before.title != after.title:
        reasons.append("title changed")
    if before.form_count != after.form_count:
        reasons.append(f"form count {before.form_count} -> {after.form_count}")

    diff = after.total_fields - before.total_fields
    if diff:
        pct = abs(diff) / max(before.total_fields, 1)
        if abs(diff) > _MAJOR_ABS or pct > _MAJOR_PCT:
            direction = "increased" if diff > 0 else "decreased"
            reasons.append(f"fields {direction} by {abs(diff)} ({pct:.0%})")
    elif before.field_counts != after.field_counts:
        reasons.append("field kinds changed")

    if reasons:
        return FormChangeVerdict(changed=True, reasons=reasons, severity="major")

    minor: list[str] = []
    if diff:
        minor.append(f"field count changed by {abs(diff)}")
    if before.heading_count != after.heading_count:
        minor.append("heading count changed")
    if minor:
        return FormChangeVerdict(changed=True, reasons=minor, severity="minor")
    return FormChangeVerdict(changed=False)


# ---------------------------------------------------------------------------
# Watcher
# ---------------------------------------------------------------------------


async def watch_page(
    page: Page,
    instance: PageInstance,
    *,
    interval: float = 1.0,
    stop: asyncio.Event | None = None,
) -> None:
    """Poll *page* and drive *instance* until *stop* is set or it closes."""
    stop = stop or asyncio.Event()
    previous = await capture_form_fingerprint(page)
    while not stop.is_set() and not instance.closed:
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            break
        except TimeoutError:
            pass
        current = await capture_form_fingerprint(page)
        verdict = detect_form_changes(previous, current)
        if current is not None:
            previous = current
        if not verdict.changed:
            continue
        if verdict.navigated:
            await instance.handle_navigation()
            instance.orchestrator.schedule("navigation")
        elif verdict.severity == "major":
            logger.debug("Form change: %s", "; ".join(verdict.reasons))
            instance.orchestrator.schedule("dom_change")
