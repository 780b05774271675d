# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Single-pass tile scan: one dominant metric per anchor.

For every anchor in one snapshot of the tree:
1. derive the key from the anchor attribute (empty keys are skipped)
2. resolve the tile (tile_resolver)
3. parse the tile's text lines and the text of its span/div/p/strong
   descendants; inline siblings render glued together ("Toys1.6K viewers"),
   their elements do not
4. keep the largest parsed value; a tile may show both a live and a
   historical count and the live one dominates
5. merge by key with keep-max

Zero anchors is an empty result, not an error. Whether that means "not yet
rendered" or "blocked" is decided by the caller (runner.py).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from . import ParsedMetric, TagRecord
from .anchors import TAG_ANCHOR_XPATH, AnchorSpec
from .dedup import MergePolicy, merge_into
from .dom_tree import LiveTreeAccessor
from .metric_parser import DEFAULT_COUNT_WORDS, MetricParser
from .tile_resolver import MAX_TILE_DEPTH, TileResolver, TileStrategy

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_TAGS: tuple[str, ...] = ("span", "div", "p", "strong")
MAX_FALLBACK_FRAGMENTS = 64


@dataclass
class ScanConfig:
    """Single-pass scan configuration."""

    anchor: AnchorSpec = field(default_factory=AnchorSpec)
    strategy: TileStrategy = TileStrategy.SIBLING_EXCLUSIVITY
    fallback_tags: tuple[str, ...] = DEFAULT_FALLBACK_TAGS
    count_words: tuple[str, ...] = DEFAULT_COUNT_WORDS
    max_depth: int = MAX_TILE_DEPTH
    anchor_wait_s: float = 120.0  # budget for anchors to appear after navigation
    poll_interval_s: float = 0.5


def _fallback_xpath(tags: Iterable[str]) -> str:
    predicate = " or ".join(f"self::{t}" for t in tags)
    return f".//*[{predicate}]"


class SinglePassExtractor:
    """Run the tile scan over one snapshot of a live tree."""

    def __init__(self, config: ScanConfig | None = None) -> None:
        self.config = config or ScanConfig()
        self.parser = MetricParser(self.config.count_words)
        self.resolver = TileResolver(
            self.config.strategy,
            anchor=self.config.anchor,
            parser=self.parser,
            max_depth=self.config.max_depth,
        )
        self._fallback_selector = _fallback_xpath(self.config.fallback_tags)

    async def extract(self, tree: LiveTreeAccessor) -> Mapping[str, TagRecord]:
        anchor_spec = self.config.anchor
        anchors = await tree.query_all(anchor_spec.selector)
        if not anchors:
            logger.info("No anchors matched %s", anchor_spec.selector)
            return MappingProxyType({})

        results: dict[str, TagRecord] = {}
        empty_keys = 0
        unparsed = 0
        for node in anchors:
            key = await anchor_spec.key_of(tree, node)
            if not key:
                empty_keys += 1
                continue
            tile = await self.resolver.resolve(node, tree)
            metric = await self._dominant_metric(tree, tile)
            if metric is None:
                unparsed += 1
                continue
            merge_into(results, TagRecord(key=key, value=metric.value, raw_text=metric.raw_text), MergePolicy.KEEP_MAX)

        logger.info(
            "Single pass: anchors=%d records=%d empty_keys=%d no_metric=%d strategy=%s",
            len(anchors),
            len(results),
            empty_keys,
            unparsed,
            self.resolver.strategy.value,
        )
        return MappingProxyType(results)

    async def _dominant_metric(self, tree: LiveTreeAccessor, tile: Any) -> ParsedMetric | None:
        lines = (await tree.text_of(tile)).split("\n")
        # The tile is the anchor or one of its ancestors, so its descendants
        # cover the anchor's own fragments.
        nodes = list(await tree.query_within(tile, self._fallback_selector))[:MAX_FALLBACK_FRAGMENTS]
        return self._best([*lines, *[await tree.text_of(n) for n in nodes]])

    def _best(self, fragments: Iterable[str]) -> ParsedMetric | None:
        best: ParsedMetric | None = None
        for fragment in fragments:
            parsed = self.parser.parse(fragment)
            if parsed is not None and (best is None or parsed.value > best.value):
                best = parsed
        return best


async def wait_for_anchors(
    tree: LiveTreeAccessor,
    selector: str,
    *,
    timeout_s: float,
    poll_interval_s: float = 0.5,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> int:
    """Poll until at least one anchor matches or *timeout_s* elapses.

    Returns the number of matching anchors (0 when the budget ran out).
    Never sleeps past the deadline.
    """
    deadline = clock() + timeout_s
    while True:
        count = len(await tree.query_all(selector))
        if count:
            return count
        remaining = deadline - clock()
        if remaining <= 0:
            logger.info("No anchors for %s after %.1fs", selector, timeout_s)
            return 0
        await sleep(min(poll_interval_s, remaining))


async def single_pass_extract(
    accessor: LiveTreeAccessor,
    anchor_selector: str = TAG_ANCHOR_XPATH,
    *,
    config: ScanConfig | None = None,
) -> Mapping[str, TagRecord]:
    """Extract one record per anchor key from the current tree snapshot."""
    config = config or ScanConfig()
    if anchor_selector != config.anchor.selector:
        config = replace(config, anchor=replace(config.anchor, selector=anchor_selector))
    return await SinglePassExtractor(config).extract(accessor)
