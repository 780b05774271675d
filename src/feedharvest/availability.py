# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Guarantee that a mandatory key is present in a result set.

Order: already present -> unchanged; otherwise ask the fallback (a
re-extraction against that key's own page); otherwise insert a sentinel
record so the row is never silently missing downstream.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from types import MappingProxyType

from . import TagRecord

logger = logging.getLogger(__name__)

SENTINEL_TEXT = "not found"

Fallback = Callable[[], Awaitable["Mapping[str, TagRecord] | TagRecord | None"]]


def sentinel_record(key: str) -> TagRecord:
    return TagRecord(key=key, value=0, raw_text=SENTINEL_TEXT)


def is_sentinel(record: TagRecord) -> bool:
    return record.value == 0 and record.raw_text == SENTINEL_TEXT


def _pick(found: Mapping[str, TagRecord] | TagRecord | None, key: str) -> TagRecord | None:
    if found is None:
        return None
    if isinstance(found, TagRecord):
        return found if found.key == key else None
    return found.get(key)


async def ensure_key(
    result_set: Mapping[str, TagRecord],
    required_key: str,
    fallback: Fallback | None = None,
) -> Mapping[str, TagRecord]:
    """Return *result_set* with *required_key* guaranteed present."""
    if required_key in result_set:
        return result_set

    record: TagRecord | None = None
    if fallback is not None:
        try:
            record = _pick(await fallback(), required_key)
        except Exception:
            logger.warning("Fallback extraction for %r failed", required_key, exc_info=True)
            record = None

    if record is None:
        logger.info("Required key %r not found; inserting sentinel", required_key)
        record = sentinel_record(required_key)
    else:
        logger.info("Required key %r recovered from fallback (value=%d)", required_key, record.value)

    merged = dict(result_set)
    merged[required_key] = record
    return MappingProxyType(merged)
