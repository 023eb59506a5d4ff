# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for regform.live — Playwright snapshot, fingerprints, watcher.

The page is an AsyncMock whose ``evaluate`` returns what the injected JS
would; the real-browser test only runs with REGFORM_LIVE_TESTS=1.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from playwright.async_api import Error as PlaywrightError

from regform.detector import run_detection
from regform.errors import SnapshotError
from regform.live import (
    FormFingerprint,
    capture_form_fingerprint,
    capture_snapshot,
    detect_form_changes,
    snapshot_source,
    watch_page,
)
from tests._helpers import DC_FORM_HTML, DC_FORM_URL


def _raw_node(tag, parent, depth, attrs=None, text="", top=0.0, **style):
    return {
        "tag": tag,
        "parent": parent,
        "depth": depth,
        "attrs": attrs or {},
        "hidden": style.pop("hidden", False),
        "text": text,
        "fontSize": style.pop("fontSize", 16),
        "fontWeight": style.pop("fontWeight", 400),
        "marginTop": 0,
        "marginBottom": 0,
        "textTransform": "none",
        "display": style.pop("display", "block"),
        "top": top,
    }


RAW_SNAPSHOT = {
    "url": "https://mytax.dc.gov/register/business",
    "title": "Register",
    "nodes": [
        _raw_node("body", None, 0),
        _raw_node("h2", 0, 1, text="Business Information", top=10, fontSize=24, fontWeight=700),
        _raw_node("label", 0, 1, {"for": "bizName"}, "Legal Business Name", top=50, display="inline"),
        _raw_node("input", 0, 1, {"id": "bizName", "name": "businessName", "type": "text"}, top=70),
        _raw_node("label", 0, 1, {"for": "fein"}, "FEIN", top=110, display="inline"),
        _raw_node("input", 0, 1, {"id": "fein", "name": "fein", "type": "text"}, top=130),
    ],
}


def _fingerprint(url=DC_FORM_URL, total=10, **overrides) -> FormFingerprint:
    data = {
        "field_counts": {"text": total},
        "total_fields": total,
        "form_count": 1,
        "heading_count": 4,
        "title": "Register",
        "url": url,
    }
    data.update(overrides)
    return FormFingerprint(**data)


class TestCaptureSnapshot:
    async def test_raw_nodes_become_snapshot(self):
        page = MagicMock(url="about:blank")
        page.evaluate = AsyncMock(return_value=RAW_SNAPSHOT)
        snap = await capture_snapshot(page, max_nodes=50)

        assert snap.url == RAW_SNAPSHOT["url"]
        assert len(snap.nodes) == 6
        header = snap.nodes[1]
        assert header.style.font_size == 24.0
        assert header.style.font_weight == 700
        assert snap.nodes[3].attr("name") == "businessName"
        assert page.evaluate.await_args.args[1] == 50

    async def test_snapshot_feeds_detection(self):
        page = MagicMock(url="about:blank")
        page.evaluate = AsyncMock(return_value=RAW_SNAPSHOT)
        result = run_detection(await capture_snapshot(page), page_instance_id="tab", generation=1)
        assert result.jurisdiction == "DC"
        assert result.field_count == 2
        assert [s.header for s in result.sections] == ["Business Information"]

    async def test_playwright_error_wrapped(self):
        page = MagicMock()
        page.evaluate = AsyncMock(side_effect=PlaywrightError("Target page, context or browser has been closed"))
        with pytest.raises(SnapshotError, match="live snapshot failed"):
            await capture_snapshot(page)

    @pytest.mark.parametrize("raw", [None, [], {"nodes": "nope"}, {"nodes": [{"depth": "x"}]}])
    async def test_bad_shape(self, raw):
        page = MagicMock(url="about:blank")
        page.evaluate = AsyncMock(return_value=raw)
        with pytest.raises(SnapshotError):
            await capture_snapshot(page)

    async def test_source_binds_page(self):
        page = MagicMock(url="about:blank")
        page.evaluate = AsyncMock(return_value=RAW_SNAPSHOT)
        source = snapshot_source(page)
        assert (await source()).title == "Register"


class TestFingerprint:
    async def test_capture(self):
        page = MagicMock()
        page.evaluate = AsyncMock(
            return_value={
                "fieldCounts": {"text": 8, "select": 2},
                "totalFields": 10,
                "formCount": 1,
                "headingCount": 4,
                "title": "Register",
                "url": DC_FORM_URL,
            }
        )
        fp = await capture_form_fingerprint(page)
        assert fp.total_fields == 10
        assert fp.field_counts["select"] == 2

    async def test_failure_returns_none(self):
        page = MagicMock()
        page.evaluate = AsyncMock(side_effect=PlaywrightError("detached"))
        assert await capture_form_fingerprint(page) is None

    async def test_non_dict_returns_none(self):
        page = MagicMock()
        page.evaluate = AsyncMock(return_value="oops")
        assert await capture_form_fingerprint(page) is None


class TestDetectFormChanges:
    def test_missing_side_is_no_change(self):
        assert not detect_form_changes(None, _fingerprint()).changed
        assert not detect_form_changes(_fingerprint(), None).changed

    def test_identical(self):
        assert not detect_form_changes(_fingerprint(), _fingerprint()).changed

    def test_fragment_change_ignored(self):
        assert not detect_form_changes(_fingerprint(), _fingerprint(url=DC_FORM_URL + "#step2")).changed

    def test_url_change_is_navigation(self):
        verdict = detect_form_changes(_fingerprint(), _fingerprint(url="https://mytax.dc.gov/register/review"))
        assert verdict.navigated
        assert verdict.severity == "major"

    def test_many_new_fields_major(self):
        verdict = detect_form_changes(_fingerprint(total=10), _fingerprint(total=16))
        assert verdict.severity == "major"
        assert "increased by 6" in verdict.reasons[0]

    def test_one_new_field_minor(self):
        verdict = detect_form_changes(_fingerprint(total=10), _fingerprint(total=11))
        assert verdict.severity == "minor"

    def test_first_fields_appearing_is_major(self):
        before = _fingerprint(total=0, form_count=0, field_counts={})
        after = _fingerprint(total=1, form_count=1, field_counts={"text": 1})
        assert detect_form_changes(before, after).severity == "major"

    def test_title_change_major(self):
        verdict = detect_form_changes(_fingerprint(), _fingerprint(title="Step 2"))
        assert verdict.reasons == ["title changed"]
        assert verdict.severity == "major"

    def test_field_kinds_swapped_major(self):
        after = _fingerprint(field_counts={"text": 9, "email": 1})
        assert detect_form_changes(_fingerprint(), after).reasons == ["field kinds changed"]

    def test_heading_change_minor(self):
        verdict = detect_form_changes(_fingerprint(), _fingerprint(heading_count=5))
        assert verdict.severity == "minor"


def _raw_fp(fp: FormFingerprint) -> dict:
    return {
        "fieldCounts": fp.field_counts,
        "totalFields": fp.total_fields,
        "formCount": fp.form_count,
        "headingCount": fp.heading_count,
        "title": fp.title,
        "url": fp.url,
    }


def _scripted_page(frames: list[dict], stop: asyncio.Event) -> MagicMock:
    calls = 0

    async def evaluate(script, *args):
        nonlocal calls
        frame = frames[min(calls, len(frames) - 1)]
        calls += 1
        if calls >= len(frames):
            stop.set()
        return frame

    page = MagicMock()
    page.evaluate = evaluate
    return page


def _instance(closed: bool = False) -> MagicMock:
    instance = MagicMock()
    instance.closed = closed
    instance.handle_navigation = AsyncMock(return_value="next-id")
    return instance


class TestWatchPage:
    async def test_drives_instance(self):
        stop = asyncio.Event()
        frames = [
            _raw_fp(_fingerprint(total=4)),
            _raw_fp(_fingerprint(total=4, heading_count=5)),
            _raw_fp(_fingerprint(total=12)),
            _raw_fp(_fingerprint(url="https://mytax.dc.gov/register/confirm", total=12)),
        ]
        instance = _instance()
        await asyncio.wait_for(watch_page(_scripted_page(frames, stop), instance, interval=0.001, stop=stop), 2)

        instance.handle_navigation.assert_awaited_once()
        assert instance.orchestrator.schedule.call_args_list == [call("dom_change"), call("navigation")]

    async def test_returns_when_instance_closed(self):
        stop = asyncio.Event()
        instance = _instance(closed=True)
        page = MagicMock()
        page.evaluate = AsyncMock(return_value=_raw_fp(_fingerprint()))
        await asyncio.wait_for(watch_page(page, instance, interval=0.001, stop=stop), 1)
        assert page.evaluate.await_count == 1
        instance.orchestrator.schedule.assert_not_called()


@pytest.mark.live
class TestRealBrowser:
    async def test_static_form_in_chromium(self):
        from playwright.async_api import async_playwright

        async with async_playwright() as pw:
            browser = await pw.chromium.launch(headless=True)
            try:
                page = await browser.new_page()
                await page.set_content(DC_FORM_HTML)
                snap = await capture_snapshot(page)
            finally:
                await browser.close()
        result = run_detection(snap, page_instance_id="live", generation=1)
        assert result.field_count == 10
