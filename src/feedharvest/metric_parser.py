# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Fuzzy metric parsing: "895 viewers", "1.6K watching", "2M viewers".

Pages render the same audience count inconsistently, sometimes exact and
sometimes abbreviated, so every form is normalized to a plain integer that
can be compared across tiles. Parse failures are silent: most fragments fed
here are unrelated text and ``None`` is the expected answer.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable

from . import ParsedMetric

logger = logging.getLogger(__name__)

DEFAULT_COUNT_WORDS: tuple[str, ...] = ("watching", "viewers", "viewer", "watchers", "watcher")

MAGNITUDES: dict[str, int] = {"k": 1_000, "m": 1_000_000}

_WS_RE = re.compile(r"\s+")

# Number (thousands commas allowed) is optional so that a bare counting word
# still matches and is then rejected as non-finite.
_NUMBER = r"(?:(?<![\w.])(?P<number>\d[\d,]*(?:\.\d+)?|\.\d+))?"
_SUFFIX = r"(?:(?<=[\d\s])(?P<suffix>[KM])(?![A-Za-z]))?"

_AMOUNT_RE = re.compile(
    r"(?P<currency>[$€£¥₩])\s*(?P<number>\d[\d,]*(?:\.\d+)?)\s*(?P<suffix>[KM])?(?![A-Za-z])"
    r"|(?<![\w.])(?P<bare>\d[\d,]*(?:\.\d+)?)\s*(?P<bare_suffix>[KM])?(?![A-Za-z\d])",
    re.IGNORECASE,
)


def normalize_ws(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WS_RE.sub(" ", text or "").strip()


def _scaled(number: str | None, suffix: str | None) -> float:
    """Apply the magnitude multiplier. Missing number -> NaN."""
    if not number:
        return math.nan
    try:
        base = float(number.replace(",", ""))
    except ValueError:
        return math.nan
    if suffix:
        base *= MAGNITUDES[suffix.lower()]
    return base


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class MetricParser:
    """Counting-word metric parser.

    ``count_words`` are matched case-insensitively with word boundaries;
    longer words are tried first so "viewers" wins over "viewer".
    """

    def __init__(self, count_words: Iterable[str] = DEFAULT_COUNT_WORDS) -> None:
        words = sorted({w.strip().lower() for w in count_words if w and w.strip()}, key=len, reverse=True)
        if not words:
            raise ValueError("count_words must contain at least one word")
        self.count_words: tuple[str, ...] = tuple(words)
        alternation = "|".join(re.escape(w) for w in words)
        self._pattern = re.compile(
            rf"{_NUMBER}\s*{_SUFFIX}\s*(?<![A-Za-z])(?P<word>{alternation})\b",
            re.IGNORECASE,
        )

    def parse(self, text: str) -> ParsedMetric | None:
        """Parse the first finite ``<number>[K|M] <count word>`` mention in *text*."""
        normalized = normalize_ws(text)
        if not normalized:
            return None
        for m in self._pattern.finditer(normalized):
            value = _scaled(m.group("number"), m.group("suffix"))
            if not math.isfinite(value):
                continue
            return ParsedMetric(value=_round_half_up(value), raw_text=normalized)
        return None

    def has_signal(self, text: str) -> bool:
        """True if *text* carries at least one parseable metric."""
        return self.parse(text) is not None


_default_parser = MetricParser()


def parse_metric(text: str) -> ParsedMetric | None:
    """Parse with the default counting words (watching / viewer(s) / watcher(s))."""
    return _default_parser.parse(text)


def parse_amount(text: str) -> float | None:
    """Extract the first amount from *text*, preferring currency-prefixed ones.

    "$1,234.50" -> 1234.5, "Sold for €1.2K" -> 1200.0, "25 bids" -> 25.0.
    Returns None when nothing numeric is present or the value is not finite.
    """
    normalized = normalize_ws(text)
    if not normalized:
        return None
    bare: float | None = None
    for m in _AMOUNT_RE.finditer(normalized):
        if m.group("currency"):
            value = _scaled(m.group("number"), m.group("suffix"))
            if math.isfinite(value):
                return round(value, 2)
        elif bare is None:
            value = _scaled(m.group("bare"), m.group("bare_suffix"))
            if math.isfinite(value):
                bare = round(value, 2)
    return bare
