# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright browser session management for Feed Harvest.

Manages Chromium lifecycle, navigation wait strategy, DOM settling and the
page chores the target site needs before extraction: closing login /
consent overlays and switching feed tabs by their label.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

from playwright.async_api import (
    Browser,
    BrowserContext,
    Dialog,
    Page,
    Playwright,
    async_playwright,
)

from .errors import BrowserError

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en-US"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

# Close buttons seen on login / app-install / consent overlays.
OVERLAY_CLOSE_SELECTORS: tuple[str, ...] = (
    'button[aria-label="Close"]',
    'button:has-text("Close")',
    'button:has-text("Not now")',
    'button:has-text("No thanks")',
    'button:has-text("Maybe later")',
    '[role="dialog"] button',
    '[data-testid*="close"]',
    'button[aria-label="Dismiss"]',
)
_OVERLAY_ROUNDS = 6
_OVERLAY_PAUSE_MS = 400

_BROWSER_DEAD_PATTERNS = (
    "target closed",
    "target page",
    "browser has been closed",
    "connection closed",
    "browser disconnected",
)


def _is_browser_dead_error(exc: BaseException) -> bool:
    """Detect browser crash/disconnect errors."""
    msg = str(exc).lower()
    return any(p in msg for p in _BROWSER_DEAD_PATTERNS)


@dataclass
class BrowserConfig:
    """Browser launch configuration."""

    headless: bool = True
    locale: str = DEFAULT_LOCALE
    viewport_width: int = 1280
    viewport_height: int = 800
    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 120000  # feed pages are slow behind their JS bundle
    settle_quiet_ms: int = 200  # DOM mutation quiet period (ms)
    settle_max_ms: int = 3000  # Maximum settle wait (ms)
    wait_strategy: str = "hybrid"  # "hybrid" | "networkidle" | "load" | "domcontentloaded"
    networkidle_budget_ms: int = 6000  # hybrid mode: networkidle attempt budget


@dataclass(frozen=True, slots=True)
class NavigationResult:
    """Result of a page navigation with strategy metadata."""

    strategy: str  # "networkidle" | "load+settle" | "load" | "domcontentloaded"
    settle_metrics: dict | None  # DOM settle: {waited_ms, mutations, reason}
    http_status: int | None = None


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds; Chromium is a ~140MB download


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process."""
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found, running 'playwright install chromium'")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
        if proc.returncode == 0:
            logger.info("Chromium installed successfully")
            return True
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except Exception:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Chromium flags: hide automation, skip background services."""
    return [
        "--disable-blink-features=AutomationControlled",
        f"--lang={config.locale}",
        "--disable-extensions",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--no-first-run",
        "--disable-breakpad",
        "--disable-component-update",
        "--noerrdialogs",
    ]


class BrowserSession:
    """One Chromium page driven by a single run at a time."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started. Use async with or call start().")
        return self._page

    async def _launch_browser(self) -> None:
        """Launch Chromium, auto-installing on first 'executable not found' error."""
        args = chromium_launch_args(self.config)
        try:
            self._browser = await self._playwright.chromium.launch(headless=self.config.headless, args=args)
        except Exception as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise BrowserError(f"Chromium launch failed: {exc}") from exc
            if not await _auto_install_chromium():
                raise BrowserError(
                    "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
                ) from exc
            self._browser = await self._playwright.chromium.launch(headless=self.config.headless, args=args)

    async def start(self) -> None:
        """Launch browser and create the working page."""
        self._playwright = await async_playwright().start()
        await self._launch_browser()
        self._context = await self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            locale=self.config.locale,
            user_agent=self.config.user_agent,
            service_workers="block",
            permissions=[],
            accept_downloads=False,
        )
        self._context.on("dialog", self._on_dialog)
        self._page = await self._context.new_page()
        logger.info("Browser session started (headless=%s)", self.config.headless)

    async def stop(self) -> None:
        """Close browser and clean up. Safe to call on a crashed browser."""
        if self._context:
            with suppress(Exception):
                await self._context.close()
            self._context = None
        self._page = None
        if self._browser:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        if self._playwright:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
        logger.info("Browser session stopped")

    async def __aenter__(self) -> BrowserSession:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    async def _on_dialog(self, dialog: Dialog) -> None:
        """Dismiss JS dialogs so they never freeze the page."""
        logger.info("JS dialog dismissed: type=%s message=%.100s", dialog.type, dialog.message)
        with suppress(Exception):
            await dialog.dismiss()

    async def navigate(self, url: str) -> NavigationResult:
        """Navigate with the configured wait strategy.

        - "networkidle" / "load" / "domcontentloaded": single goto wait
        - "hybrid" (default): goto with load, then networkidle within budget,
          falling back to load+settle on timeout
        """
        strategy = self.config.wait_strategy
        try:
            if strategy in ("networkidle", "load", "domcontentloaded"):
                response = await self.page.goto(url, wait_until=strategy, timeout=self.config.timeout_ms)
                settle = await self.wait_for_dom_settle()
                return NavigationResult(
                    strategy=strategy,
                    settle_metrics=settle,
                    http_status=response.status if response else None,
                )

            response = await self.page.goto(url, wait_until="load", timeout=self.config.timeout_ms)
        except Exception as exc:
            raise BrowserError(f"Navigation to {url} failed: {exc}") from exc

        used_strategy = "load+settle"
        idle_task = asyncio.ensure_future(self.page.wait_for_load_state("networkidle"))
        done, _pending = await asyncio.wait({idle_task}, timeout=self.config.networkidle_budget_ms / 1000)
        if idle_task in done:
            exc = idle_task.exception()
            if exc is None:
                used_strategy = "networkidle"
            elif _is_browser_dead_error(exc):
                raise BrowserError(f"Browser died while loading {url}") from exc
            else:
                logger.debug("networkidle completed with error: %s", exc)
        else:
            idle_task.cancel()
            with suppress(asyncio.CancelledError):
                await idle_task
            logger.info(
                "networkidle budget exceeded (%.1fs), proceeding with load+settle",
                self.config.networkidle_budget_ms / 1000,
            )

        settle = await self.wait_for_dom_settle()
        return NavigationResult(
            strategy=used_strategy,
            settle_metrics=settle,
            http_status=response.status if response else None,
        )

    async def wait_for_dom_settle(self, quiet_ms: int | None = None, max_ms: int | None = None) -> dict | None:
        """Wait for DOM mutations to settle using MutationObserver.

        Returns {"waited_ms", "mutations", "reason": "quiet"|"timeout"} or None
        if page.evaluate failed.
        """
        q = quiet_ms if quiet_ms is not None else self.config.settle_quiet_ms
        m = max_ms if max_ms is not None else self.config.settle_max_ms
        try:
            result = await self.page.evaluate(_DOM_SETTLE_JS, [q, m])
            logger.debug(
                "DOM settle: %dms, %d mutations, reason=%s",
                result.get("waited_ms", 0),
                result.get("mutations", 0),
                result.get("reason", "unknown"),
            )
            return result
        except Exception:
            logger.debug("DOM settle failed, continuing", exc_info=True)
            return None

    async def dismiss_overlays(self) -> int:
        """Best-effort close of login / consent popups. Returns clicks made."""
        clicks = 0
        for _ in range(_OVERLAY_ROUNDS):
            for selector in OVERLAY_CLOSE_SELECTORS:
                try:
                    button = await self.page.query_selector(selector)
                    if button is None:
                        continue
                    await button.click(timeout=2000)
                    clicks += 1
                except Exception:
                    logger.debug("Overlay close failed for %s", selector, exc_info=True)
                await self.page.wait_for_timeout(_OVERLAY_PAUSE_MS)
            with suppress(Exception):
                await self.page.keyboard.press("Escape")
            await self.page.wait_for_timeout(_OVERLAY_PAUSE_MS)
        if clicks:
            logger.info("Dismissed overlays (%d clicks)", clicks)
        return clicks

    async def click_by_text(self, pattern: str | re.Pattern[str]) -> bool:
        """Click the first tab / button / link whose trimmed text matches *pattern*."""
        source = pattern.pattern if isinstance(pattern, re.Pattern) else pattern
        clicked = await self.page.evaluate(_CLICK_BY_TEXT_JS, source)
        if clicked:
            logger.info("Clicked element matching /%s/", source)
            await self.wait_for_dom_settle(max_ms=2000)
        return bool(clicked)

    async def get_page_title(self) -> str:
        return await self.page.title()

    async def get_page_html(self) -> str:
        return await self.page.content()

    async def get_scroll_position(self) -> dict:
        """Current scroll offset and document dimensions."""
        return await self.page.evaluate(_SCROLL_POSITION_JS)

    async def scroll_to(self, y: float) -> dict:
        """Scroll the window to *y*. Parameterized evaluate, no interpolation."""
        await self.page.evaluate("(y) => window.scrollTo(0, y)", y)
        return await self.page.evaluate(_SCROLL_POSITION_JS)


# ── Page scripts (static, no interpolation) ──────────────────────────

_SCROLL_POSITION_JS = """() => ({
    scrollX: Math.round(window.scrollX),
    scrollY: Math.round(window.scrollY),
    scrollWidth: document.documentElement.scrollWidth,
    scrollHeight: document.documentElement.scrollHeight,
    clientWidth: document.documentElement.clientWidth,
    clientHeight: document.documentElement.clientHeight,
})"""

_CLICK_BY_TEXT_JS = """(pattern) => {
  const r = new RegExp(pattern, 'i');
  const els = [...document.querySelectorAll('[role="tab"],[role="button"],button,a,span,h5,div')];
  const el = els.find((e) => r.test((e.textContent || '').trim()));
  if (el) { el.click(); return true; }
  return false;
}"""

_DOM_SETTLE_JS = """([quietMs, maxMs]) => new Promise(resolve => {
  let mutations = 0;
  let quietTimer = null;
  let maxTimer = null;
  const start = performance.now();

  const finish = (reason) => {
    observer.disconnect();
    if (quietTimer) clearTimeout(quietTimer);
    if (maxTimer) clearTimeout(maxTimer);
    resolve({
      waited_ms: Math.round(performance.now() - start),
      mutations: mutations,
      reason: reason
    });
  };

  const resetQuiet = () => {
    if (quietTimer) clearTimeout(quietTimer);
    quietTimer = setTimeout(() => finish('quiet'), quietMs);
  };

  const observer = new MutationObserver((records) => {
    mutations += records.length;
    resetQuiet();
  });

  observer.observe(document.documentElement, {
    childList: true,
    subtree: true,
    characterData: true
  });

  resetQuiet();
  maxTimer = setTimeout(() => finish('timeout'), maxMs);
})"""


@asynccontextmanager
async def create_session(
    config: BrowserConfig | None = None,
) -> AsyncGenerator[BrowserSession, None]:
    """Context manager to create and manage a browser session."""
    session = BrowserSession(config)
    await session.start()
    try:
        yield session
    finally:
        await session.stop()
