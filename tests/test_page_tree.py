# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for PageTreeAccessor with mocked Playwright handles."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from feedharvest.browser_session import BrowserConfig
from feedharvest.dom_tree import LiveTreeAccessor, ViewportMetrics
from feedharvest.page_tree import PageTreeAccessor


def _make_session() -> MagicMock:
    session = MagicMock()
    session.config = BrowserConfig()
    session.page = MagicMock()
    session.page.query_selector_all = AsyncMock(return_value=["h1", "h2"])
    session.page.evaluate = AsyncMock()
    session.page.mouse.wheel = AsyncMock()
    session.wait_for_dom_settle = AsyncMock(return_value={"reason": "quiet"})
    session.scroll_to = AsyncMock()
    session.get_scroll_position = AsyncMock(return_value={"scrollY": 640, "clientHeight": 800, "scrollHeight": 4000})
    return session


def test_satisfies_protocol():
    assert isinstance(PageTreeAccessor(_make_session()), LiveTreeAccessor)


class TestQueries:
    @pytest.mark.asyncio
    async def test_query_all_uses_xpath_engine(self):
        session = _make_session()
        nodes = await PageTreeAccessor(session).query_all('//a[starts-with(@href, "/tag/")]')
        assert nodes == ["h1", "h2"]
        session.page.query_selector_all.assert_awaited_once_with('xpath=//a[starts-with(@href, "/tag/")]')

    @pytest.mark.asyncio
    async def test_query_within_is_relative(self):
        node = MagicMock()
        node.query_selector_all = AsyncMock(return_value=[])
        await PageTreeAccessor(_make_session()).query_within(node, "//span")
        node.query_selector_all.assert_awaited_once_with("xpath=.//span")

    @pytest.mark.asyncio
    async def test_parent_of(self):
        parent = MagicMock()
        handle = MagicMock()
        handle.as_element.return_value = parent
        handle.dispose = AsyncMock()
        node = MagicMock()
        node.evaluate_handle = AsyncMock(return_value=handle)
        assert await PageTreeAccessor(_make_session()).parent_of(node) is parent
        handle.dispose.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_parent_of_root_disposes_handle(self):
        handle = MagicMock()
        handle.as_element.return_value = None
        handle.dispose = AsyncMock()
        node = MagicMock()
        node.evaluate_handle = AsyncMock(return_value=handle)
        assert await PageTreeAccessor(_make_session()).parent_of(node) is None
        handle.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_text_of_normalizes_lines(self):
        node = MagicMock()
        node.evaluate = AsyncMock(return_value="  Toys \n\n  1.6K   viewers\n")
        assert await PageTreeAccessor(_make_session()).text_of(node) == "Toys\n1.6K viewers"

    @pytest.mark.asyncio
    async def test_text_of_none(self):
        node = MagicMock()
        node.evaluate = AsyncMock(return_value=None)
        assert await PageTreeAccessor(_make_session()).text_of(node) == ""

    @pytest.mark.asyncio
    async def test_attribute_of(self):
        node = MagicMock()
        node.get_attribute = AsyncMock(return_value="/tag/toys")
        assert await PageTreeAccessor(_make_session()).attribute_of(node, "href") == "/tag/toys"
        node.get_attribute.assert_awaited_once_with("href")


class TestScrolling:
    @pytest.mark.asyncio
    async def test_viewport_metrics(self):
        metrics = await PageTreeAccessor(_make_session()).viewport_metrics()
        assert metrics == ViewportMetrics(position=640.0, extent=800.0, total_extent=4000.0)

    @pytest.mark.asyncio
    async def test_scroll_to_delegates(self):
        session = _make_session()
        await PageTreeAccessor(session).scroll_to(1200)
        session.scroll_to.assert_awaited_once_with(1200)

    @pytest.mark.asyncio
    async def test_render_step_scrolls_wheels_and_settles(self):
        session = _make_session()
        await PageTreeAccessor(session).trigger_render_step()
        session.page.evaluate.assert_awaited_once()
        session.page.mouse.wheel.assert_awaited_once_with(0, 800)
        session.wait_for_dom_settle.assert_awaited_once()

    def test_elapsed_time_uses_clock(self):
        ticks = iter([10.0, 12.5])
        accessor = PageTreeAccessor(_make_session(), clock=lambda: next(ticks))
        assert accessor.elapsed_time() == 2.5
