# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Feed Harvest: metric extraction from live, lazily rendered pages.

Two extraction modes over a live document tree:
- single pass: one dominant metric per anchor tile (tag -> watchers)
- incremental harvest: scroll-driven accumulation until the feed converges
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TypeAlias, Union


@dataclass(frozen=True, slots=True)
class ParsedMetric:
    """A metric value recovered from a free-text fragment."""

    value: int  # non-negative, magnitude suffix applied
    raw_text: str  # whitespace-normalized source fragment


@dataclass(frozen=True, slots=True)
class TagRecord:
    """Single-pass record: one anchor key and its dominant metric."""

    key: str
    value: int
    raw_text: str

    @property
    def identity(self) -> str:
        return self.key


@dataclass(frozen=True, slots=True)
class HarvestRecord:
    """Harvest record. Identity is the full (title, secondary_key, value) triple."""

    title: str
    secondary_key: str
    value: float

    @property
    def identity(self) -> tuple[str, str, float]:
        return (self.title, self.secondary_key, self.value)


Record: TypeAlias = Union[TagRecord, HarvestRecord]

# Keys are unique; a run owns the mutable dict and hands out a read-only view.
ResultSet: TypeAlias = Mapping
