# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Webhook delivery of result sets (spreadsheet Apps Script endpoint).

Payload shapes::

    tag scan: {"token": ..., "rows": [{ts, page, tag, watching_text, watchers}]}
    harvest:  {"token": ..., "tab": "sold_YYYY-MM-DD_HHMM", "rows": [{ts, page, title, secondary, value}]}
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from . import HarvestRecord, TagRecord
from .errors import SinkError

logger = logging.getLogger(__name__)


def now_iso(now: datetime | None = None) -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_tab_name(now: datetime | None = None, prefix: str = "sold") -> str:
    """Sheet tab for a harvest export, e.g. ``sold_2025-12-26_2359`` (UTC)."""
    now = (now or datetime.now(UTC)).astimezone(UTC)
    return f"{prefix}_{now:%Y-%m-%d_%H%M}"


def build_tag_payload(
    records: Mapping[str, TagRecord],
    *,
    page_url: str,
    token: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    ts = now_iso(now)
    return {
        "token": token,
        "rows": [
            {
                "ts": ts,
                "page": page_url,
                "tag": r.key,
                "watching_text": r.raw_text,
                "watchers": r.value,
            }
            for r in records.values()
        ],
    }


def build_harvest_payload(
    records: Mapping[Any, HarvestRecord],
    *,
    page_url: str,
    token: str,
    tab: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    ts = now_iso(now)
    return {
        "token": token,
        "tab": tab or make_tab_name(now),
        "rows": [
            {
                "ts": ts,
                "page": page_url,
                "title": r.title,
                "secondary": r.secondary_key,
                "value": r.value,
            }
            for r in records.values()
        ],
    }


@dataclass
class SinkConfig:
    webhook_url: str
    token: str
    timeout_s: float = 30.0


class WebhookSink:
    """POST JSON payloads to the configured webhook."""

    def __init__(self, config: SinkConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self._transport = transport

    async def deliver(self, payload: dict[str, Any]) -> str:
        """Send *payload*; returns the response body. Raises SinkError on failure."""
        rows = len(payload.get("rows", []))
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_s, transport=self._transport) as client:
                response = await client.post(self.config.webhook_url, json=payload)
        except httpx.HTTPError as exc:
            raise SinkError(f"Webhook request failed: {exc}") from exc

        if response.is_error:
            raise SinkError(
                f"Webhook returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        logger.info("Delivered %d rows (HTTP %d)", rows, response.status_code)
        return response.text
