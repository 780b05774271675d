# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for runner orchestration with a mocked session and static pages."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from feedharvest.availability import is_sentinel
from feedharvest.browser_session import NavigationResult
from feedharvest.dom_tree import HtmlTreeAccessor
from feedharvest.errors import EmptyExtractionError
from feedharvest.harvest import HarvestConfig, HarvestPhase
from feedharvest.pipeline_timer import PipelineTimer
from feedharvest.runner import classify_empty_page, run_harvest, run_tag_scan
from feedharvest.single_pass import ScanConfig
from tests._feed_helpers import FakeClock

CATEGORY = "https://shop.example.com/tag/toys"
FALLBACK = "https://shop.example.com/tag/pokemon"
SOLD = "https://shop.example.com/user/seller/shop"

PAGES = {
    CATEGORY: """
        <html><body><div class="grid">
          <div><a href="/tag/toys">Toys</a><p>1.6K viewers</p></div>
          <div><a href="/tag/dolls">Dolls</a><p>80 watching</p></div>
        </div></body></html>
    """,
    FALLBACK: """
        <html><body><div class="grid">
          <div><a href="/tag/pokemon">Pokemon</a><p>2M viewers</p></div>
          <div><a href="/tag/toys">Toys</a><p>1 viewer</p></div>
        </div></body></html>
    """,
    SOLD: """
        <html><body><main>
          <a href="/listing/a1"><div>Pikachu</div><div>$25</div></a>
          <a href="/listing/b2"><div>Eevee</div><div>$8.50</div></a>
        </main></body></html>
    """,
}

FAST_SCAN = ScanConfig(anchor_wait_s=0.0)


@pytest.fixture
def tree(monkeypatch):
    tree = HtmlTreeAccessor.from_html("<html><body></body></html>")
    monkeypatch.setattr("feedharvest.runner.PageTreeAccessor", lambda session: tree)
    return tree


def _make_session(tree: HtmlTreeAccessor, pages: dict[str, str] = PAGES) -> MagicMock:
    async def navigate(url):
        tree.load_html(pages.get(url, "<html><head><title>Empty</title></head><body></body></html>"))
        return NavigationResult(strategy="load", settle_metrics=None, http_status=200)

    session = MagicMock()
    session.navigate = AsyncMock(side_effect=navigate)
    session.dismiss_overlays = AsyncMock(return_value=0)
    session.click_by_text = AsyncMock(return_value=True)
    session.get_page_title = AsyncMock(return_value="Shop")
    session.get_page_html = AsyncMock(return_value="<html></html>")
    return session


class TestClassifyEmptyPage:
    @pytest.mark.parametrize(
        "title,html",
        [
            ("Just a moment...", ""),
            ("Shop", '<div class="cf-turnstile"></div>'),
            ("Access Denied", ""),
            ("", '<iframe src="https://geo.captcha-delivery.com/captcha/"></iframe>'),
        ],
    )
    def test_blocked(self, title, html):
        assert classify_empty_page(title, html) == "blocked"

    def test_not_rendered(self):
        assert classify_empty_page("Toys | Shop", "<div id='root'></div>") == "not_rendered"


class TestRunTagScan:
    @pytest.mark.asyncio
    async def test_scan_without_required_key(self, tree):
        session = _make_session(tree)
        records = await run_tag_scan(session, CATEGORY, config=FAST_SCAN)
        assert {k: r.value for k, r in records.items()} == {"toys": 1600, "dolls": 80}
        session.navigate.assert_awaited_once_with(CATEGORY)
        session.dismiss_overlays.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_required_key_from_fallback_page(self, tree):
        session = _make_session(tree)
        timer = PipelineTimer()
        records = await run_tag_scan(
            session, CATEGORY, config=FAST_SCAN, required_key="pokemon", fallback_url=FALLBACK, timer=timer
        )
        assert records["pokemon"].value == 2_000_000
        # primary page values are kept
        assert records["toys"].value == 1600
        assert set(records) == {"toys", "dolls", "pokemon"}
        assert "fallback" in timer.elapsed_per_stage()

    @pytest.mark.asyncio
    async def test_required_key_present_skips_fallback(self, tree):
        session = _make_session(tree)
        await run_tag_scan(session, CATEGORY, config=FAST_SCAN, required_key="toys", fallback_url=FALLBACK)
        assert [c.args[0] for c in session.navigate.await_args_list] == [CATEGORY]

    @pytest.mark.asyncio
    async def test_required_key_missing_everywhere_gets_sentinel(self, tree):
        session = _make_session(tree)
        records = await run_tag_scan(
            session, CATEGORY, config=FAST_SCAN, required_key="lego", fallback_url=FALLBACK
        )
        assert is_sentinel(records["lego"])

    @pytest.mark.asyncio
    async def test_fallback_page_empty_gets_sentinel(self, tree):
        session = _make_session(tree)
        records = await run_tag_scan(
            session,
            CATEGORY,
            config=FAST_SCAN,
            required_key="pokemon",
            fallback_url="https://shop.example.com/tag/missing",
        )
        assert is_sentinel(records["pokemon"])
        assert records["toys"].value == 1600

    @pytest.mark.asyncio
    async def test_empty_primary_page_raises_classified(self, tree):
        session = _make_session(tree)
        session.get_page_title = AsyncMock(return_value="Just a moment...")
        with pytest.raises(EmptyExtractionError) as exc_info:
            await run_tag_scan(session, "https://shop.example.com/blank", config=FAST_SCAN)
        assert exc_info.value.reason == "blocked"
        assert exc_info.value.url == "https://shop.example.com/blank"

    @pytest.mark.asyncio
    async def test_overlays_can_be_skipped(self, tree):
        session = _make_session(tree)
        await run_tag_scan(session, CATEGORY, config=FAST_SCAN, dismiss_overlays=False)
        session.dismiss_overlays.assert_not_awaited()


class TestRunHarvest:
    @pytest.mark.asyncio
    async def test_harvest_after_tab_switch(self, tree):
        session = _make_session(tree)
        clock = FakeClock()
        config = HarvestConfig(settle_s=0.1, poll_interval_s=0.5, bottom_wait_s=2.0, ceiling_s=60.0)
        result = await run_harvest(
            session, SOLD, config=config, tab_pattern="^sold$", clock=clock, sleep=clock.sleep
        )
        session.click_by_text.assert_awaited_once_with("^sold$")
        assert result.terminal_state is HarvestPhase.DONE
        assert {(r.title, r.value) for r in result.records.values()} == {("Pikachu", 25.0), ("Eevee", 8.5)}

    @pytest.mark.asyncio
    async def test_missing_tab_still_harvests(self, tree):
        session = _make_session(tree)
        session.click_by_text = AsyncMock(return_value=False)
        clock = FakeClock()
        config = HarvestConfig(settle_s=0.1, poll_interval_s=0.5, bottom_wait_s=1.0, ceiling_s=60.0)
        result = await run_harvest(session, SOLD, config=config, tab_pattern="^sold$", clock=clock, sleep=clock.sleep)
        assert len(result.records) == 2
