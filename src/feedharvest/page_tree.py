# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""LiveTreeAccessor over a live Playwright page.

Node handles are ``ElementHandle`` objects from a fresh query; they are not
kept across passes because the feed re-renders its cards while scrolling.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from playwright.async_api import ElementHandle

from .browser_session import BrowserSession
from .dom_tree import ViewportMetrics, relative_xpath

logger = logging.getLogger(__name__)

_TEXT_JS = "el => el.innerText || el.textContent || ''"
_PARENT_JS = "el => el.parentElement"
_TAG_JS = "el => el.tagName.toLowerCase()"
_SCROLL_TO_END_JS = "() => window.scrollTo(0, document.documentElement.scrollHeight)"

_RENDER_STEP_SETTLE_MS = 1500


def _normalize_lines(text: str) -> str:
    lines = (" ".join(line.split()) for line in text.split("\n"))
    return "\n".join(line for line in lines if line)


class PageTreeAccessor:
    """Playwright-backed tree accessor for one BrowserSession."""

    def __init__(self, session: BrowserSession, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.session = session
        self._clock = clock
        self._started = clock()

    async def query_all(self, selector: str) -> list[ElementHandle]:
        return await self.session.page.query_selector_all(f"xpath={selector}")

    async def query_within(self, node: ElementHandle, selector: str) -> list[ElementHandle]:
        return await node.query_selector_all(f"xpath={relative_xpath(selector)}")

    async def parent_of(self, node: ElementHandle) -> ElementHandle | None:
        handle = await node.evaluate_handle(_PARENT_JS)
        element = handle.as_element()
        if element is None:
            await handle.dispose()
        return element

    async def text_of(self, node: ElementHandle) -> str:
        return _normalize_lines(await node.evaluate(_TEXT_JS) or "")

    async def attribute_of(self, node: ElementHandle, name: str) -> str | None:
        return await node.get_attribute(name)

    async def tag_of(self, node: ElementHandle) -> str:
        return await node.evaluate(_TAG_JS)

    async def trigger_render_step(self) -> None:
        """Nudge lazy loaders: jump to the document end and let the DOM settle."""
        page = self.session.page
        await page.evaluate(_SCROLL_TO_END_JS)
        await page.mouse.wheel(0, self.session.config.viewport_height)
        await self.session.wait_for_dom_settle(max_ms=_RENDER_STEP_SETTLE_MS)

    async def scroll_to(self, position: float) -> None:
        await self.session.scroll_to(position)

    async def viewport_metrics(self) -> ViewportMetrics:
        pos: dict[str, Any] = await self.session.get_scroll_position()
        return ViewportMetrics(
            position=float(pos.get("scrollY", 0)),
            extent=float(pos.get("clientHeight", 0)),
            total_extent=float(pos.get("scrollHeight", 0)),
        )

    def elapsed_time(self) -> float:
        return self._clock() - self._started
