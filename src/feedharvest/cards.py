# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Card reader for harvest feeds: one HarvestRecord per rendered card.

Field selectors are optional. Without them the card's own text is used:
first line -> title, first amount in the remaining lines -> value, and the
card link's slug -> secondary key. A card whose text is one line (title and
price in adjacent inline elements) is split per element instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from . import HarvestRecord
from .anchors import derive_key
from .dom_tree import LiveTreeAccessor
from .metric_parser import normalize_ws, parse_amount

logger = logging.getLogger(__name__)

SOLD_CARD_XPATH = './/a[contains(@href, "/listing/")]'
# Elements carrying their own text, in document order
OWN_TEXT_XPATH = ".//*[normalize-space(text())]"


@dataclass(frozen=True, slots=True)
class CardSpec:
    card_selector: str = SOLD_CARD_XPATH
    title_selector: str | None = None
    secondary_selector: str | None = None
    value_selector: str | None = None
    key_attribute: str = "href"
    key_prefix: str = "/listing/"


class CardExtractor:
    """Page-specific extraction function for IncrementalHarvestEngine."""

    def __init__(self, spec: CardSpec | None = None) -> None:
        self.spec = spec or CardSpec()

    async def __call__(self, tree: LiveTreeAccessor) -> list[HarvestRecord]:
        records: list[HarvestRecord] = []
        cards = await tree.query_all(self.spec.card_selector)
        for card in cards:
            record = await self._read_card(tree, card)
            if record is not None:
                records.append(record)
        logger.debug("Card pass: cards=%d records=%d", len(cards), len(records))
        return records

    async def _field(self, tree: LiveTreeAccessor, card: Any, selector: str | None) -> str | None:
        if not selector:
            return None
        nodes = await tree.query_within(card, selector)
        if not nodes:
            return ""
        return normalize_ws(await tree.text_of(nodes[0]))

    async def _own_text_fragments(self, tree: LiveTreeAccessor, card: Any) -> list[str]:
        nodes = await tree.query_within(card, OWN_TEXT_XPATH)
        texts = [normalize_ws(await tree.text_of(node)) for node in nodes]
        return [text for text in texts if text]

    async def _read_card(self, tree: LiveTreeAccessor, card: Any) -> HarvestRecord | None:
        lines = [line for line in (await tree.text_of(card)).split("\n") if line.strip()]

        title = await self._field(tree, card, self.spec.title_selector)
        if title is None:
            if len(lines) == 1:
                # Adjacent inline title and price render as one glued line
                lines = await self._own_text_fragments(tree, card) or lines
            title = normalize_ws(lines[0]) if lines else ""
        if not title:
            return None
        rest = [line for line in lines if normalize_ws(line) != title]

        secondary = await self._field(tree, card, self.spec.secondary_selector)
        if secondary is None:
            secondary = derive_key(await tree.attribute_of(card, self.spec.key_attribute), self.spec.key_prefix)

        value_text = await self._field(tree, card, self.spec.value_selector)
        value = parse_amount(value_text if value_text is not None else "\n".join(rest))
        if value is None:
            return None
        return HarvestRecord(title=title, secondary_key=secondary, value=value)
