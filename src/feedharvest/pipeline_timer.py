# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Run stage timer for latency logging and timeout diagnostics.

Created outside ``asyncio.timeout`` so it survives cancellation and can still
say which stage a run was stuck in.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

_STAGE_HINTS = {
    "navigation": "Page is slow to load or keeps long-polling connections open.",
    "overlays": "An overlay kept reappearing; check the close-button selectors.",
    "wait_anchors": "Anchors never rendered. The page layout may have changed or the request was blocked.",
    "extract": "Tile resolution is slow; the page may hold far more anchors than expected.",
    "harvest": "Feed kept growing; raise the harvest ceiling or accept partial results.",
    "fallback": "Fallback page for the required key is slow to render.",
}


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0

    @property
    def elapsed_ms(self) -> float:
        return round((self.end_ns - self.start_ns) / 1e6, 1)


class PipelineTimer:
    """Track run stage transitions."""

    __slots__ = ("_stages", "_current", "_start_ns")

    def __init__(self) -> None:
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = time.monotonic_ns()

    def stage(self, name: str) -> None:
        """End previous stage + start new stage."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        """End current stage. Call on success or error."""
        if self._current is not None:
            self._current.end_ns = time.monotonic_ns()
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    def elapsed_per_stage(self) -> dict[str, float]:
        """{stage_name: elapsed_ms}, including the running stage."""
        result = {s.name: s.elapsed_ms for s in self._stages}
        if self._current is not None:
            result[self._current.name] = round((time.monotonic_ns() - self._current.start_ns) / 1e6, 1)
        return result

    def timeout_report(self) -> dict:
        now = time.monotonic_ns()
        current = self.current_stage or "unknown"
        return {
            "error": "timeout",
            "completed_stages": [{"stage": s.name, "ms": s.elapsed_ms} for s in self._stages],
            "timed_out_at": current,
            "timed_out_stage_ms": round((now - self._current.start_ns) / 1e6, 1) if self._current else 0,
            "total_ms": round((now - self._start_ns) / 1e6, 1),
            "hint": _STAGE_HINTS.get(current, f"Timed out during '{current}' stage."),
        }
