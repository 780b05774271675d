# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tile boundary inference: which container belongs to one anchor alone.

Two walks, because page layouts disagree about which one is right:

- content signal: climb from the anchor to the first node whose text carries
  a parseable metric. Works when the metric sits beside, not inside, the link.
- sibling exclusivity: climb while the parent still holds only this anchor's
  key. Stops before a grid row so a neighbour's count cannot leak in.

The tag grid needs sibling exclusivity; cards whose link wraps only the
thumbnail need content signal.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from .anchors import AnchorSpec
from .dom_tree import LiveTreeAccessor
from .metric_parser import MetricParser

logger = logging.getLogger(__name__)

MAX_TILE_DEPTH = 10


class TileStrategy(str, Enum):
    CONTENT_SIGNAL = "content_signal"
    SIBLING_EXCLUSIVITY = "sibling_exclusivity"


class TileResolver:
    """Resolve an anchor to its tile container."""

    def __init__(
        self,
        strategy: TileStrategy | str = TileStrategy.SIBLING_EXCLUSIVITY,
        *,
        anchor: AnchorSpec | None = None,
        parser: MetricParser | None = None,
        max_depth: int = MAX_TILE_DEPTH,
    ) -> None:
        self.strategy = TileStrategy(strategy)
        self.anchor = anchor or AnchorSpec()
        self.parser = parser or MetricParser()
        self.max_depth = max_depth

    async def resolve(self, anchor_node: Any, tree: LiveTreeAccessor) -> Any:
        if self.strategy is TileStrategy.CONTENT_SIGNAL:
            return await self._content_signal_walk(anchor_node, tree)
        return await self._sibling_exclusivity_walk(anchor_node, tree)

    async def _content_signal_walk(self, anchor_node: Any, tree: LiveTreeAccessor) -> Any:
        node = anchor_node
        for _ in range(self.max_depth):
            if node is None:
                break
            if self.parser.has_signal(await tree.text_of(node)):
                return node
            node = await tree.parent_of(node)

        parent = await tree.parent_of(anchor_node)
        return parent if parent is not None else anchor_node

    async def _sibling_exclusivity_walk(self, anchor_node: Any, tree: LiveTreeAccessor) -> Any:
        tile = anchor_node
        for _ in range(self.max_depth):
            parent = await tree.parent_of(tile)
            if parent is None:
                break
            if await self._distinct_keys(parent, tree) > 1:
                break
            tile = parent
        return tile

    async def _distinct_keys(self, container: Any, tree: LiveTreeAccessor) -> int:
        # Image link + title link to the same key count once. Empty keys
        # ("See all" links to the bare prefix) are not anchors.
        keys = set()
        for node in await tree.query_within(container, self.anchor.selector):
            key = await self.anchor.key_of(tree, node)
            if key:
                keys.add(key)
            if len(keys) > 1:
                break
        return len(keys)
