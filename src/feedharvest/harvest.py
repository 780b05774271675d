# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Incremental harvest of lazily rendered feeds.

Explicit state machine::

    INIT -> SCANNING <-> AT_BOTTOM_WAITING -> DONE
    (any non-terminal state) -> TIMED_OUT

- INIT: scroll to top, settle once.
- SCANNING: extract + merge, then scroll one viewport minus overlap.
  At the scroll maximum, move to AT_BOTTOM_WAITING.
- AT_BOTTOM_WAITING: poll (render step + extract) until the bag grows
  (back to SCANNING, new content may sit below the old bottom) or the wait
  window passes without growth (DONE).
- TIMED_OUT: hard ceiling on total run time, checked before every step.

Feeds never announce completion, so growth within a bounded window is the
termination signal. Partial results are returned on TIMED_OUT.

Clock and sleep are injectable; every sleep is clamped to the remaining
ceiling budget.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from . import HarvestRecord
from .cards import CardExtractor
from .dedup import MergePolicy, merge_into
from .dom_tree import LiveTreeAccessor, ViewportMetrics

logger = logging.getLogger(__name__)

ExtractFn = Callable[[LiveTreeAccessor], Awaitable[Iterable[HarvestRecord]]]


class HarvestPhase(str, Enum):
    INIT = "init"
    SCANNING = "scanning"
    AT_BOTTOM_WAITING = "at_bottom_waiting"
    DONE = "done"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in (HarvestPhase.DONE, HarvestPhase.TIMED_OUT)


@dataclass
class HarvestConfig:
    """Harvest timing and scrolling parameters (seconds / CSS pixels)."""

    settle_s: float = 1.0  # after each scroll
    poll_interval_s: float = 0.5  # re-extract cadence at the bottom
    bottom_wait_s: float = 6.0  # growth window at the bottom
    ceiling_s: float = 180.0  # hard limit for the whole run
    overlap_px: float = 120.0  # kept from the previous viewport on each step
    bottom_tolerance_px: float = 2.0


@dataclass
class HarvestState:
    started_at: float
    last_growth_at: float
    bag: dict[Any, HarvestRecord] = field(default_factory=dict)
    scroll_position: float = 0.0
    phase: HarvestPhase = HarvestPhase.INIT
    cycles: int = 0


@dataclass(frozen=True, slots=True)
class HarvestResult:
    records: Mapping[Any, HarvestRecord]
    terminal_state: HarvestPhase
    cycles: int
    elapsed_s: float


# ---------------------------------------------------------------------------
# Transition predicates (pure)
# ---------------------------------------------------------------------------


def is_at_bottom(metrics: ViewportMetrics, tolerance: float = 2.0) -> bool:
    return metrics.position + metrics.extent >= metrics.total_extent - tolerance


def next_scroll_position(metrics: ViewportMetrics, overlap: float) -> float:
    """One viewport minus overlap further down, never past the maximum."""
    step = max(metrics.extent - overlap, 1.0)
    return min(metrics.position + step, metrics.max_position)


def ceiling_reached(elapsed: float, ceiling: float) -> bool:
    return elapsed >= ceiling


def stall_expired(now: float, waiting_since: float, window: float) -> bool:
    return now - waiting_since >= window


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class IncrementalHarvestEngine:
    """Drive render/extract cycles until the feed converges or time runs out."""

    def __init__(
        self,
        tree: LiveTreeAccessor,
        extract_fn: ExtractFn,
        config: HarvestConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.tree = tree
        self.extract_fn = extract_fn
        self.config = config or HarvestConfig()
        self._clock = clock
        self._sleep = sleep

    async def run(self) -> HarvestResult:
        now = self._clock()
        state = HarvestState(started_at=now, last_growth_at=now)
        steps = {
            HarvestPhase.INIT: self._init,
            HarvestPhase.SCANNING: self._scan,
            HarvestPhase.AT_BOTTOM_WAITING: self._wait_at_bottom,
        }
        while not state.phase.terminal:
            if self._out_of_time(state):
                state.phase = HarvestPhase.TIMED_OUT
                break
            await steps[state.phase](state)

        elapsed = self._elapsed(state)
        log = logger.warning if state.phase is HarvestPhase.TIMED_OUT else logger.info
        log(
            "Harvest finished: state=%s records=%d cycles=%d elapsed=%.1fs",
            state.phase.value,
            len(state.bag),
            state.cycles,
            elapsed,
        )
        return HarvestResult(
            records=MappingProxyType(dict(state.bag)),
            terminal_state=state.phase,
            cycles=state.cycles,
            elapsed_s=elapsed,
        )

    # -- helpers -----------------------------------------------------------

    def _elapsed(self, state: HarvestState) -> float:
        return self._clock() - state.started_at

    def _out_of_time(self, state: HarvestState) -> bool:
        return ceiling_reached(self._elapsed(state), self.config.ceiling_s)

    async def _pause(self, state: HarvestState, seconds: float) -> None:
        """Cooperative sleep, clamped to the remaining ceiling budget."""
        remaining = self.config.ceiling_s - self._elapsed(state)
        delay = min(seconds, remaining)
        if delay > 0:
            await self._sleep(delay)

    async def _harvest(self, state: HarvestState) -> int:
        """One extract + merge cycle. Returns the number of new records."""
        added = 0
        for record in await self.extract_fn(self.tree):
            if merge_into(state.bag, record, MergePolicy.KEEP_FIRST_SEEN):
                added += 1
        state.cycles += 1
        if added:
            state.last_growth_at = self._clock()
        logger.debug("Harvest cycle %d: +%d (total %d)", state.cycles, added, len(state.bag))
        return added

    # -- states ------------------------------------------------------------

    async def _init(self, state: HarvestState) -> None:
        await self.tree.scroll_to(0)
        state.scroll_position = 0.0
        await self._pause(state, self.config.settle_s)
        state.phase = HarvestPhase.SCANNING

    async def _scan(self, state: HarvestState) -> None:
        await self._harvest(state)
        metrics = await self.tree.viewport_metrics()
        state.scroll_position = metrics.position
        if is_at_bottom(metrics, self.config.bottom_tolerance_px):
            state.phase = HarvestPhase.AT_BOTTOM_WAITING
            return

        await self.tree.scroll_to(next_scroll_position(metrics, self.config.overlap_px))
        await self._pause(state, self.config.settle_s)
        moved = await self.tree.viewport_metrics()
        if moved.position <= metrics.position:
            # Scroll had no effect; treat as bottom and wait for growth there.
            state.phase = HarvestPhase.AT_BOTTOM_WAITING
        state.scroll_position = moved.position

    async def _wait_at_bottom(self, state: HarvestState) -> None:
        waiting_since = self._clock()
        while True:
            if self._out_of_time(state):
                state.phase = HarvestPhase.TIMED_OUT
                return
            now = self._clock()
            if stall_expired(now, waiting_since, self.config.bottom_wait_s):
                state.phase = HarvestPhase.DONE
                return
            window_left = self.config.bottom_wait_s - (now - waiting_since)
            await self._pause(state, min(self.config.poll_interval_s, window_left))
            await self.tree.trigger_render_step()
            if await self._harvest(state):
                state.phase = HarvestPhase.SCANNING
                return


async def incremental_harvest(
    accessor: LiveTreeAccessor,
    config: HarvestConfig | None = None,
    extract_fn: ExtractFn | None = None,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> tuple[Mapping[Any, HarvestRecord], HarvestPhase]:
    """Run a harvest to completion and return ``(records, terminal_state)``."""
    engine = IncrementalHarvestEngine(
        accessor,
        extract_fn or CardExtractor(),
        config,
        clock=clock,
        sleep=sleep,
    )
    result = await engine.run()
    return result.records, result.terminal_state
