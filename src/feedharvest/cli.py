# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Feed Harvest CLI: scan, harvest, extract commands.

Usage:
    feedharvest scan [--url URL] [--require-key KEY] [--fallback-url URL] [--strategy S] [--dry-run]
    feedharvest harvest --url URL [--tab REGEX] [--card-xpath XPATH] [--ceiling SECONDS] [--dry-run]
    feedharvest extract --html FILE [--strategy S]

Webhook URL and token come from FEEDHARVEST_WEBHOOK_URL / FEEDHARVEST_AUTH_TOKEN
(or SHEETS_WEBHOOK_URL / SHEETS_AUTH_TOKEN) unless --dry-run prints the payload.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import ConfigError, EmptyExtractionError, FeedHarvestError, SinkError

if TYPE_CHECKING:
    from .sink import SinkConfig

logger = logging.getLogger(__name__)

DEFAULT_TAG_URL = "https://www.whatnot.com/tag/toys"

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_EMPTY = 2
EXIT_SINK = 3
EXIT_TIMEOUT = 4
EXIT_ERROR = 5


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _sink_config(args: argparse.Namespace) -> SinkConfig | None:
    """Resolve delivery settings before any browser work. None on --dry-run."""
    if args.dry_run:
        return None
    from .config import load_sink_config

    return load_sink_config(args.webhook_url, args.token)


async def _deliver(payload: dict, sink_config: SinkConfig | None) -> None:
    from .sink import WebhookSink

    if sink_config is None:
        _emit(payload)
        return
    body = await WebhookSink(sink_config).deliver(payload)
    print(f"Response: {body}")


async def cmd_scan(args: argparse.Namespace) -> None:
    """Single-pass tag scan against a live page."""
    from .anchors import AnchorSpec
    from .browser_session import create_session
    from .config import browser_config_from_env, scan_config_from_env
    from .pipeline_timer import PipelineTimer
    from .runner import run_tag_scan
    from .sink import build_tag_payload

    sink_config = _sink_config(args)
    config = scan_config_from_env()
    if args.strategy:
        config = replace(config, strategy=args.strategy)
    if args.anchor_xpath:
        config = replace(config, anchor=AnchorSpec(selector=args.anchor_xpath, key_prefix=args.key_prefix))
    browser_config = browser_config_from_env()
    if args.headed:
        browser_config = replace(browser_config, headless=False)

    timer = PipelineTimer()
    try:
        async with asyncio.timeout(args.timeout), create_session(browser_config) as session:
            records = await run_tag_scan(
                session,
                args.url,
                config=config,
                required_key=args.require_key,
                fallback_url=args.fallback_url,
                timer=timer,
            )
    except TimeoutError:
        logger.error("Scan timed out: %s", timer.timeout_report())
        raise

    payload = build_tag_payload(records, page_url=args.url, token=sink_config.token if sink_config else "")
    await _deliver(payload, sink_config)


async def cmd_harvest(args: argparse.Namespace) -> None:
    """Incremental harvest of a lazily rendered feed."""
    from .browser_session import create_session
    from .cards import CardSpec
    from .config import browser_config_from_env, harvest_config_from_env
    from .runner import run_harvest
    from .sink import build_harvest_payload

    sink_config = _sink_config(args)
    config = harvest_config_from_env()
    if args.ceiling is not None:
        config = replace(config, ceiling_s=args.ceiling)
    cards = CardSpec(card_selector=args.card_xpath) if args.card_xpath else CardSpec()
    browser_config = browser_config_from_env()
    if args.headed:
        browser_config = replace(browser_config, headless=False)

    async with create_session(browser_config) as session:
        result = await run_harvest(session, args.url, config=config, cards=cards, tab_pattern=args.tab)

    print(
        f"Harvest {result.terminal_state.value}: {len(result.records)} records in {result.elapsed_s:.1f}s",
        file=sys.stderr,
    )
    payload = build_harvest_payload(result.records, page_url=args.url, token=sink_config.token if sink_config else "")
    await _deliver(payload, sink_config)


async def cmd_extract(args: argparse.Namespace) -> None:
    """Offline single pass over a saved HTML file."""
    from .dom_tree import HtmlTreeAccessor
    from .single_pass import ScanConfig, SinglePassExtractor

    path = Path(args.html)
    if not path.is_file():
        raise ConfigError(f"HTML file not found: {path}")
    accessor = HtmlTreeAccessor.from_html(path.read_text(encoding="utf-8", errors="replace"))
    config = ScanConfig(strategy=args.strategy) if args.strategy else ScanConfig()
    records = await SinglePassExtractor(config).extract(accessor)
    _emit({key: {"watchers": r.value, "watching_text": r.raw_text} for key, r in records.items()})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="feedharvest", description="Metric extraction from live feed pages")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--log-level", default="INFO", help="Root log level (default INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    strategies = ["content_signal", "sibling_exclusivity"]

    def _delivery_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--webhook-url", default=None, help="Override FEEDHARVEST_WEBHOOK_URL")
        p.add_argument("--token", default=None, help="Override FEEDHARVEST_AUTH_TOKEN")
        p.add_argument("--dry-run", action="store_true", help="Print the payload instead of posting it")
        p.add_argument("--headed", action="store_true", help="Show the browser window")

    p_scan = sub.add_parser("scan", help="Single-pass tag/metric scan")
    p_scan.add_argument("--url", default=DEFAULT_TAG_URL)
    p_scan.add_argument("--anchor-xpath", default=None, help="Anchor selector (XPath)")
    p_scan.add_argument("--key-prefix", default="/tag/", help="Prefix stripped from anchor hrefs")
    p_scan.add_argument("--strategy", choices=strategies, default=None)
    p_scan.add_argument("--require-key", default=None, help="Key that must appear in the output")
    p_scan.add_argument("--fallback-url", default=None, help="Dedicated page for --require-key")
    p_scan.add_argument("--timeout", type=float, default=600.0, help="Whole-run timeout in seconds")
    _delivery_args(p_scan)
    p_scan.set_defaults(func=cmd_scan)

    p_harvest = sub.add_parser("harvest", help="Incremental harvest of a lazy feed")
    p_harvest.add_argument("--url", required=True)
    p_harvest.add_argument("--tab", default=None, help="Regex of a tab label to click first (e.g. '^sold$')")
    p_harvest.add_argument("--card-xpath", default=None, help="Card selector (XPath)")
    p_harvest.add_argument("--ceiling", type=float, default=None, help="Hard harvest ceiling in seconds")
    _delivery_args(p_harvest)
    p_harvest.set_defaults(func=cmd_harvest)

    p_extract = sub.add_parser("extract", help="Offline scan of a saved HTML file")
    p_extract.add_argument("--html", required=True)
    p_extract.add_argument("--strategy", choices=strategies, default=None)
    p_extract.set_defaults(func=cmd_extract)

    return parser


def main(argv: list[str] | None = None) -> int:
    from .logging_config import bind_run, configure

    args = build_parser().parse_args(argv)
    configure(json_output=args.log_json, level=args.log_level)
    bind_run(args.command, getattr(args, "url", None))

    try:
        asyncio.run(args.func(args))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except EmptyExtractionError as e:
        print(f"No data extracted ({e.reason}): {e}", file=sys.stderr)
        return EXIT_EMPTY
    except SinkError as e:
        print(f"Delivery failed: {e}", file=sys.stderr)
        return EXIT_SINK
    except TimeoutError:
        print("Run timed out", file=sys.stderr)
        return EXIT_TIMEOUT
    except FeedHarvestError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
