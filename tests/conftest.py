# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import regform  # noqa: F401
except ImportError:
    raise ImportError("regform is not installed. Run: pip install -e '.[dev]'") from None

import logging

import pytest
import structlog

from regform.snapshot import parse_html
from tests._helpers import DC_FORM_HTML, DC_FORM_URL, FakeClock, fast_config


def pytest_collection_modifyitems(config, items):
    """Skip live-marked tests unless REGFORM_LIVE_TESTS=1."""
    import os

    if os.environ.get("REGFORM_LIVE_TESTS") == "1":
        return
    skip_marker = pytest.mark.skip(reason="set REGFORM_LIVE_TESTS=1 to run live browser tests")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture(autouse=True)
def _restore_logging():
    """CLI tests call configure(); put the root logger back afterwards."""
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return fast_config()


@pytest.fixture
def dc_snapshot():
    return parse_html(DC_FORM_HTML, url=DC_FORM_URL)
