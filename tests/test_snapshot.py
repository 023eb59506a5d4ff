# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for regform.snapshot — static HTML → PageSnapshot."""

from __future__ import annotations

import pytest

from regform.errors import SnapshotError
from regform.snapshot import (
    ElementNode,
    NodeStyle,
    PageSnapshot,
    collapse_ws,
    parse_font_weight,
    parse_html,
    parse_inline_style,
    parse_length,
)


def _by_tag(snapshot: PageSnapshot, tag: str) -> list[ElementNode]:
    return [n for n in snapshot.nodes if n.tag == tag]


class TestCssHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [("20px", 20.0), ("1.5em", 24.0), ("2rem", 32.0), ("12pt", 16.0), ("150%", 24.0), ("7", 7.0)],
    )
    def test_parse_length(self, value, expected):
        assert parse_length(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "auto", "calc(1px + 2px)"])
    def test_parse_length_uninterpretable(self, value):
        assert parse_length(value) is None

    @pytest.mark.parametrize("value,expected", [("bold", 700), ("normal", 400), ("600", 600), ("heavy", None)])
    def test_parse_font_weight(self, value, expected):
        assert parse_font_weight(value) == expected

    def test_parse_inline_style(self):
        decls = parse_inline_style("font-size: 20px; FONT-WEIGHT:bold !important; junk")
        assert decls == {"font-size": "20px", "font-weight": "bold"}

    def test_collapse_ws(self):
        assert collapse_ws("  a \n\t b  ") == "a b"


class TestParseHtml:
    def test_empty_document_raises(self):
        with pytest.raises(SnapshotError):
            parse_html("   ")

    def test_ids_follow_document_order(self, dc_snapshot):
        assert [n.node_id for n in dc_snapshot.nodes] == list(range(len(dc_snapshot.nodes)))
        assert dc_snapshot.nodes[0].tag == "body"
        assert dc_snapshot.nodes[0].parent_id is None

    def test_title_and_url(self, dc_snapshot):
        assert dc_snapshot.title == "Register a New Business - MyTax.DC.gov"
        assert dc_snapshot.url == "https://mytax.dc.gov/register/business"

    def test_heading_defaults(self, dc_snapshot):
        h1 = _by_tag(dc_snapshot, "h1")[0]
        assert h1.style.font_size == 32.0
        assert h1.style.font_weight == 700
        assert h1.style.is_block

    def test_inline_style_and_inheritance(self):
        snap = parse_html(
            '<body><div style="font-size: 20px; font-weight: bold; text-transform: uppercase">'
            "<span>Owner</span></div></body>"
        )
        span = _by_tag(snap, "span")[0]
        assert span.style.font_size == 20.0
        assert span.style.font_weight == 700
        assert span.style.text_transform == "uppercase"
        assert not span.style.is_block

    def test_scripts_and_styles_skipped(self):
        snap = parse_html("<body><script>var x = 1;</script><style>p{}</style><p>Hi</p></body>")
        tags = [n.tag for n in snap.nodes]
        assert "script" not in tags and "style" not in tags
        assert "p" in tags

    def test_hidden_is_inherited(self):
        snap = parse_html('<body><div style="display:none"><input name="a"></div><input name="b"></body>')
        hidden, visible = _by_tag(snap, "input")
        assert hidden.style.hidden
        assert not hidden.is_field
        assert visible.is_field

    def test_own_text_includes_tails(self):
        snap = parse_html("<body><p>Hello <b>big</b> world</p></body>")
        p = _by_tag(snap, "p")[0]
        assert p.text == "Hello world"
        assert set(snap.text_content(p.node_id).split()) == {"Hello", "big", "world"}

    def test_layout_moves_down(self, dc_snapshot):
        inputs = [n for n in dc_snapshot.field_nodes()]
        tops = [n.top for n in inputs]
        assert tops == sorted(tops)
        assert tops[-1] > tops[0]

    def test_options_do_not_advance_layout(self):
        snap = parse_html("<body><select><option>A</option><option>B</option></select><input name='x'></body>")
        select, _, _, field = snap.nodes[1:5]
        assert field.top == pytest.approx(select.top + 36.0)


class TestFieldNodes:
    def test_non_data_inputs_excluded(self, dc_snapshot):
        kinds = [n.input_kind for n in dc_snapshot.field_nodes()]
        assert "hidden" not in kinds
        assert "submit" not in kinds
        assert len(kinds) == 10

    def test_aria_hidden_excluded(self):
        snap = parse_html('<body><input name="a" aria-hidden="true"><textarea name="b"></textarea></body>')
        assert [n.input_kind for n in snap.field_nodes()] == ["textarea"]

    def test_input_kind_defaults_to_text(self):
        snap = parse_html('<body><input name="a"><input type="EMAIL" name="b"></body>')
        assert [n.input_kind for n in snap.field_nodes()] == ["text", "email"]


class TestIndexes:
    def test_label_for_and_by_element_id(self, dc_snapshot):
        label = dc_snapshot.label_for("fein")
        assert label is not None and label.tag == "label"
        assert dc_snapshot.by_element_id("fein").tag == "input"
        assert dc_snapshot.by_element_id("missing") is None

    def test_ancestors(self, dc_snapshot):
        field = dc_snapshot.by_element_id("email")
        tags = [a.tag for a in dc_snapshot.ancestors(field.node_id)]
        assert tags == ["form", "body"]
        assert dc_snapshot.has_ancestor(field.node_id, frozenset({"form"}))

    def test_children(self):
        snap = parse_html("<body><ul><li>a</li><li>b</li></ul></body>")
        ul = _by_tag(snap, "ul")[0]
        assert [snap.nodes[i].text for i in snap.children(ul.node_id)] == ["a", "b"]


class TestPageSnapshotValidation:
    def test_ids_must_match_positions(self):
        nodes = (ElementNode(node_id=0, tag="body", parent_id=None, depth=0), ElementNode(5, "p", 0, 1))
        with pytest.raises(SnapshotError, match="document order"):
            PageSnapshot(url="", title="", nodes=nodes)

    def test_default_style(self):
        assert NodeStyle().font_size == 16.0
        assert not NodeStyle().is_block
