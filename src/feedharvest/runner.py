# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Caller-level orchestration over a BrowserSession.

This is the layer that decides severity: the extraction core returns empty
or partial results, and only here does "no anchors after the full wait"
become an EmptyExtractionError, classified as blocked or not rendered.
Primary and fallback pages run one after the other on the same session.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from . import TagRecord
from .availability import ensure_key
from .browser_session import BrowserSession
from .cards import CardExtractor, CardSpec
from .errors import EmptyExtractionError
from .harvest import HarvestConfig, HarvestResult, IncrementalHarvestEngine
from .page_tree import PageTreeAccessor
from .pipeline_timer import PipelineTimer
from .single_pass import ScanConfig, SinglePassExtractor, wait_for_anchors

logger = logging.getLogger(__name__)

# Anti-bot / WAF interstitial markers (title or markup, lowercase)
ANTI_BOT_KEYWORDS: tuple[str, ...] = (
    "captcha",
    "challenge-platform",
    "cf-browser-verification",
    "cf-turnstile",
    "just a moment",
    "access denied",
    "attention required",
    "please verify",
    "you have been blocked",
    "datadome",
    "px-captcha",
    "errors.edgesuite.net",
)


def classify_empty_page(title: str, html: str) -> str:
    """Why did no anchor render? ``"blocked"`` or ``"not_rendered"``."""
    haystack = f"{title}\n{html}".lower()
    if any(kw in haystack for kw in ANTI_BOT_KEYWORDS):
        return "blocked"
    return "not_rendered"


async def _open(session: BrowserSession, url: str, timer: PipelineTimer, *, dismiss_overlays: bool) -> None:
    timer.stage("navigation")
    nav = await session.navigate(url)
    logger.info("Loaded %s (status=%s, strategy=%s)", url, nav.http_status, nav.strategy)
    if dismiss_overlays:
        timer.stage("overlays")
        await session.dismiss_overlays()


async def _scan_page(
    session: BrowserSession,
    accessor: PageTreeAccessor,
    url: str,
    config: ScanConfig,
    timer: PipelineTimer,
    *,
    dismiss_overlays: bool,
) -> Mapping[str, TagRecord]:
    await _open(session, url, timer, dismiss_overlays=dismiss_overlays)
    timer.stage("wait_anchors")
    found = await wait_for_anchors(
        accessor,
        config.anchor.selector,
        timeout_s=config.anchor_wait_s,
        poll_interval_s=config.poll_interval_s,
    )
    if not found:
        reason = classify_empty_page(await session.get_page_title(), await session.get_page_html())
        raise EmptyExtractionError(f"No anchors rendered on {url} ({reason})", reason=reason, url=url)
    timer.stage("extract")
    return await SinglePassExtractor(config).extract(accessor)


async def run_tag_scan(
    session: BrowserSession,
    url: str,
    *,
    config: ScanConfig | None = None,
    required_key: str | None = None,
    fallback_url: str | None = None,
    dismiss_overlays: bool = True,
    timer: PipelineTimer | None = None,
) -> Mapping[str, TagRecord]:
    """Scan *url* for tag tiles; guarantee *required_key* if given.

    Raises:
        EmptyExtractionError: no anchors rendered on the primary page.
    """
    config = config or ScanConfig()
    timer = timer or PipelineTimer()
    accessor = PageTreeAccessor(session)
    try:
        records = await _scan_page(session, accessor, url, config, timer, dismiss_overlays=dismiss_overlays)

        if required_key:
            timer.stage("fallback")

            async def _fallback() -> Mapping[str, TagRecord]:
                return await _scan_page(
                    session, accessor, fallback_url, config, timer, dismiss_overlays=dismiss_overlays
                )

            records = await ensure_key(records, required_key, _fallback if fallback_url else None)
    finally:
        timer.finalize()
        logger.info("Tag scan stage timings: %s", timer.elapsed_per_stage())
    return records


async def run_harvest(
    session: BrowserSession,
    url: str,
    *,
    config: HarvestConfig | None = None,
    cards: CardSpec | None = None,
    tab_pattern: str | None = None,
    dismiss_overlays: bool = True,
    timer: PipelineTimer | None = None,
    **engine_kwargs: Any,
) -> HarvestResult:
    """Open *url*, optionally switch to the tab matching *tab_pattern*, and harvest."""
    timer = timer or PipelineTimer()
    accessor = PageTreeAccessor(session)
    try:
        await _open(session, url, timer, dismiss_overlays=dismiss_overlays)
        if tab_pattern and not await session.click_by_text(tab_pattern):
            logger.warning("No tab matched /%s/; harvesting the default view", tab_pattern)
        timer.stage("harvest")
        engine = IncrementalHarvestEngine(accessor, CardExtractor(cards), config, **engine_kwargs)
        result = await engine.run()
    finally:
        timer.finalize()
        logger.info("Harvest stage timings: %s", timer.elapsed_per_stage())
    return result
