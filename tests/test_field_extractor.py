# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for regform.field_extractor — labels, descriptors and group collapsing."""

from __future__ import annotations

from regform.field_extractor import collect_field_entries, describe_field, resolve_label
from regform.snapshot import PageSnapshot, parse_html


def _first_field(snapshot: PageSnapshot):
    return next(snapshot.field_nodes())


def _label_of(html: str, element_id: str | None = None) -> str:
    snap = parse_html(f"<body>{html}</body>")
    node = snap.by_element_id(element_id) if element_id else _first_field(snap)
    return resolve_label(snap, node)


class TestResolveLabel:
    def test_aria_label_wins(self):
        html = '<label for="x">Label For</label><input id="x" aria-label="Aria  Name">'
        assert _label_of(html, "x") == "Aria Name"

    def test_aria_labelledby_joins_references(self):
        html = '<span id="l1">Business</span> <span id="l2">Name</span><input id="x" aria-labelledby="l1 l2 nope">'
        assert _label_of(html, "x") == "Business Name"

    def test_label_for(self, dc_snapshot):
        node = dc_snapshot.by_element_id("bizName")
        assert resolve_label(dc_snapshot, node) == "Legal Business Name"

    def test_wrapping_label(self):
        assert _label_of('<label>Entity Name <input name="e"></label>') == "Entity Name"

    def test_preceding_text(self):
        assert _label_of('<p>Email Address</p><input name="m">') == "Email Address"

    def test_checkbox_uses_following_text(self):
        html = '<p>Terms</p><input type="checkbox" name="agree"><span>I agree to the terms</span>'
        assert _label_of(html) == "I agree to the terms"

    def test_preceding_text_stops_at_previous_field(self):
        snap = parse_html('<body><p>First</p><input id="a"><input id="b"></body>')
        assert resolve_label(snap, snap.by_element_id("a")) == "First"
        assert resolve_label(snap, snap.by_element_id("b")) == ""


class TestDescribeField:
    def test_descriptor_attributes(self):
        snap = parse_html(
            '<body><label for="c">Company</label>'
            '<input id="c" name="companyName" placeholder="  Your   company " autocomplete="organization"></body>'
        )
        descriptor = describe_field(snap, snap.by_element_id("c"))
        assert descriptor.kind == "text"
        assert descriptor.name == "companyName"
        assert descriptor.element_id == "c"
        assert descriptor.label == "Company"
        assert descriptor.placeholder == "Your company"
        assert descriptor.autocomplete == "organization"
        assert descriptor.member_ids == (descriptor.node_id,)

    def test_select_options(self, dc_snapshot):
        descriptor = describe_field(dc_snapshot, dc_snapshot.by_element_id("entityType"))
        assert descriptor.kind == "select"
        assert descriptor.options == ("Limited Liability Company", "Corporation", "Partnership")

    def test_nearby_text_carries_section_header(self, dc_snapshot):
        descriptor = describe_field(dc_snapshot, dc_snapshot.by_element_id("email"))
        assert descriptor.nearby_text == ("Contact Information",)


RADIO_HTML = """<body>
<fieldset><legend>Entity Type</legend>
  <input type="radio" name="etype" id="r1"><label for="r1">LLC</label>
  <input type="radio" name="etype" id="r2"><label for="r2">Corporation</label>
  <input type="radio" name="etype" id="r3"><label for="r3">Partnership</label>
</fieldset>
<input type="radio" name="solo" id="s1"><label for="s1">Only option</label>
</body>"""

CHECKBOX_HTML = """<body>
<p>Business activities</p>
<input type="checkbox" id="c1" name="act1"><label for="c1">Retail</label>
<input type="checkbox" id="c2" name="act2"><label for="c2">Wholesale</label>
<input type="checkbox" id="c3" name="act3"><label for="c3">Services</label>
<div style="margin-top: 200px">
  <input type="checkbox" id="agree" name="agree"><label for="agree">I certify the information is true</label>
</div>
</body>"""


class TestGroups:
    def test_radios_collapse_into_group(self):
        snap = parse_html(RADIO_HTML)
        entries = collect_field_entries(snap)
        group = entries[0]
        assert group.kind == "radio_group"
        assert group.label == "Entity Type"
        assert group.options == ("LLC", "Corporation", "Partnership")
        assert len(group.member_ids) == 3
        assert group.node_id == snap.by_element_id("r1").node_id

    def test_single_radio_stays_single(self):
        entries = collect_field_entries(parse_html(RADIO_HTML))
        assert [e.kind for e in entries] == ["radio_group", "radio"]
        assert entries[1].label == "Only option"

    def test_adjacent_checkboxes_collapse(self):
        entries = collect_field_entries(parse_html(CHECKBOX_HTML))
        assert [e.kind for e in entries] == ["checkbox_group", "checkbox"]
        group, single = entries
        assert group.label == "Business activities"
        assert group.options == ("Retail", "Wholesale", "Services")
        assert single.label == "I certify the information is true"

    def test_proximity_threshold_is_configurable(self):
        entries = collect_field_entries(parse_html(CHECKBOX_HTML), checkbox_proximity_px=10.0)
        assert [e.kind for e in entries] == ["checkbox"] * 4

    def test_entries_in_document_order(self, dc_snapshot):
        entries = collect_field_entries(dc_snapshot)
        assert len(entries) == 10
        assert [e.node_id for e in entries] == sorted(e.node_id for e in entries)
        assert entries[0].label == "Legal Business Name"
