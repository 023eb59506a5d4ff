# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""regform CLI: detect, classify, jurisdiction commands.

Usage:
    regform detect --html FILE [--url URL] [--json] [--plan]
    regform detect --url URL --fetch [--json]
    regform detect --url URL --live [--json]
    regform classify LABEL [--name NAME] [--kind KIND] [--jurisdiction CODE]
    regform jurisdiction URL
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from . import DetectionResult, FieldDescriptor, confidence_label
from .config import RegFormConfig
from .errors import RegFormError

_DETECT_TIMEOUT = 30.0


def render_text(result: DetectionResult) -> str:
    """Human-readable multi-line rendering of a detection result."""
    from .detector import summarize

    summary = summarize(result)
    lines = [
        f"URL:          {result.url}",
        f"Jurisdiction: {result.jurisdiction} (prior {result.jurisdiction_prior})",
        f"Confidence:   {result.confidence} ({confidence_label(result.confidence)})",
        f"Fields:       {result.field_count} ({summary.classified} classified, {summary.unclassified} other)",
    ]
    for section in result.sections:
        title = section.header or "(ungrouped)"
        lines.append("")
        lines.append(f"{'#' * max(section.level, 1)} {title}")
        for item in section.fields:
            lines.append(f"  [{item.category.value} {item.confidence}] {item.field.display_name} <{item.field.kind}>")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# detect
# ---------------------------------------------------------------------------


async def _fetch_html(url: str) -> str:
    import httpx

    async with httpx.AsyncClient(follow_redirects=True, timeout=_DETECT_TIMEOUT) as client:
        response = await client.get(url, headers={"User-Agent": "regform/0.3"})
        response.raise_for_status()
        return response.text


async def _capture_live(url: str):
    from playwright.async_api import async_playwright

    from .live import capture_snapshot

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=True)
        try:
            page = await browser.new_page()
            await page.goto(url, wait_until="networkidle", timeout=_DETECT_TIMEOUT * 1000)
            return await capture_snapshot(page)
        finally:
            await browser.close()


def cmd_detect(args: argparse.Namespace) -> None:
    """Run one detection pass and print the result."""
    import httpx

    from .autofill import build_fill_plan
    from .detector import run_detection
    from .error_reporter import sanitize_detail
    from .serializer import to_dict, to_json
    from .snapshot import parse_html

    if not args.html and not args.url:
        print("Error: give --html FILE or --url URL.", file=sys.stderr)
        sys.exit(2)

    config = RegFormConfig.from_env()
    try:
        if args.html:
            html = Path(args.html).read_text(encoding="utf-8")
            snapshot = parse_html(html, url=args.url or "")
        elif args.live:
            snapshot = asyncio.run(_capture_live(args.url))
        else:
            snapshot = parse_html(asyncio.run(_fetch_html(args.url)), url=args.url)
        result = run_detection(snapshot, page_instance_id="cli", generation=1, config=config)
    except (RegFormError, OSError, httpx.HTTPError) as e:
        print(f"Error: {sanitize_detail(str(e))}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        if args.plan:
            data = to_dict(result)
            data["fill_plan"] = [
                {"node_id": a.node_id, "category": a.category.value, "value": a.value, "label": a.label}
                for a in build_fill_plan(result)
            ]
            print(json.dumps(data, ensure_ascii=False, indent=2))
        else:
            print(to_json(result))
        return

    print(render_text(result))
    if args.plan:
        print("\nSample fill plan:")
        for action in build_fill_plan(result):
            print(f"  {action.label}: {action.value}")


# ---------------------------------------------------------------------------
# classify / jurisdiction
# ---------------------------------------------------------------------------


def cmd_classify(args: argparse.Namespace) -> None:
    """Classify a single field label."""
    from .field_classifier import classify_field

    descriptor = FieldDescriptor(
        node_id=0,
        kind=args.kind,
        name=args.name or "",
        label=args.label,
        options=tuple(args.option or ()),
    )
    config = RegFormConfig.from_env()
    result = classify_field(descriptor, args.jurisdiction or "", weights=config.weights)
    if args.json:
        print(
            json.dumps(
                {
                    "category": result.category.value,
                    "confidence": result.confidence,
                    "matched_rules": list(result.matched_rules),
                },
                indent=2,
            )
        )
        return
    print(f"{result.category.value} {result.confidence} ({confidence_label(result.confidence)})")
    for rule in result.matched_rules:
        print(f"  {rule}")


def cmd_jurisdiction(args: argparse.Namespace) -> None:
    """Identify the jurisdiction of a URL."""
    from .jurisdiction import analyze_url

    match = analyze_url(args.url)
    if args.json:
        print(
            json.dumps(
                {"code": match.code, "prior": match.prior, "rule": match.rule, "signals": list(match.signals)},
                indent=2,
            )
        )
        return
    print(f"{match.code} prior={match.prior}" + (f" rule={match.rule}" if match.rule else ""))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Business-registration form detection", prog="regform")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_detect = subparsers.add_parser(
        "detect",
        help="Detect a registration form in a page",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  %(prog)s --html form.html --url https://mytax.dc.gov/register   Static file
  %(prog)s --url https://sunbiz.org/forms --fetch                   Fetch with httpx
  %(prog)s --url https://sunbiz.org/forms --live --json             Render with Chromium""",
    )
    p_detect.add_argument("--html", type=str, metavar="FILE", help="Local HTML file")
    p_detect.add_argument("--url", type=str, metavar="URL", help="Page URL (source when no --html)")
    source = p_detect.add_mutually_exclusive_group()
    source.add_argument("--fetch", action="store_true", help="Fetch static HTML (default without --html)")
    source.add_argument("--live", action="store_true", help="Render with Playwright Chromium")
    p_detect.add_argument("--json", action="store_true", help="JSON output")
    p_detect.add_argument("--plan", action="store_true", help="Include a sample fill plan")

    p_classify = subparsers.add_parser("classify", help="Classify one field label")
    p_classify.add_argument("label", type=str)
    p_classify.add_argument("--name", type=str, help="name attribute")
    p_classify.add_argument("--kind", type=str, default="text", help="input kind (default: text)")
    p_classify.add_argument("--option", action="append", help="option text (repeatable)")
    p_classify.add_argument("--jurisdiction", type=str, help="jurisdiction code, e.g. DC")
    p_classify.add_argument("--json", action="store_true")

    p_jur = subparsers.add_parser("jurisdiction", help="Identify the jurisdiction of a URL")
    p_jur.add_argument("url", type=str)
    p_jur.add_argument("--json", action="store_true")

    commands = {"detect": cmd_detect, "classify": cmd_classify, "jurisdiction": cmd_jurisdiction}

    args = parser.parse_args(argv)

    from .logging_config import configure

    level = "DEBUG" if args.verbose else RegFormConfig.from_env().log_level
    configure(json_output=args.log_json, level=level)

    commands[args.command](args)


if __name__ == "__main__":
    main()
