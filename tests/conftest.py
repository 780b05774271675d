# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import feedharvest  # noqa: F401
except ImportError:
    raise ImportError("feedharvest is not installed. Run: pip install -e '.[dev]'") from None

import pytest


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real Chromium launches in unit tests.

    Tests drive HtmlTreeAccessor or mocked Playwright objects. A test that
    really needs a browser can opt out with ``@pytest.mark.allow_real_browser``.
    """
    if "allow_real_browser" in request.keywords:
        return

    def _no_real_playwright():
        raise RuntimeError("Test tried to launch a real browser. Use HtmlTreeAccessor or mock the session.")

    monkeypatch.setattr("feedharvest.browser_session.async_playwright", _no_real_playwright)
