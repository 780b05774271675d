# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Record merge policies.

Pure functions: the merge result depends only on the two records given.

- keep_max (single pass): a tag seen in several tiles keeps its largest count.
- keep_first_seen (harvest): records are keyed by the full
  (title, secondary_key, value) triple, so only exact re-renders collapse;
  two sales of the same title at different prices stay separate.
"""

from __future__ import annotations

from collections.abc import Callable, MutableMapping
from enum import Enum
from typing import Any

from . import HarvestRecord, Record, TagRecord


class MergePolicy(str, Enum):
    KEEP_MAX = "keep_max"
    KEEP_FIRST_SEEN = "keep_first_seen"


def keep_max(existing: TagRecord, candidate: TagRecord) -> TagRecord:
    """Larger value wins; ties keep *existing*."""
    return candidate if candidate.value > existing.value else existing


def keep_first_seen(existing: HarvestRecord, candidate: HarvestRecord) -> HarvestRecord:
    return existing


_POLICIES: dict[MergePolicy, Callable[[Any, Any], Any]] = {
    MergePolicy.KEEP_MAX: keep_max,
    MergePolicy.KEEP_FIRST_SEEN: keep_first_seen,
}


def record_key(record: Record) -> Any:
    """Result-set key: the tag for single-pass records, the triple for harvest records."""
    return record.identity


def merge(existing: Record, candidate: Record, policy: MergePolicy | str = MergePolicy.KEEP_MAX) -> Record:
    """Merge two records sharing a key."""
    if record_key(existing) != record_key(candidate):
        raise ValueError(
            f"cannot merge records with different keys: {record_key(existing)!r} != {record_key(candidate)!r}"
        )
    return _POLICIES[MergePolicy(policy)](existing, candidate)


def merge_into(
    result_set: MutableMapping[Any, Record],
    record: Record,
    policy: MergePolicy | str = MergePolicy.KEEP_MAX,
) -> bool:
    """Merge *record* into *result_set* in place. Returns True if a new key was added."""
    key = record_key(record)
    existing = result_set.get(key)
    if existing is None:
        result_set[key] = record
        return True
    result_set[key] = merge(existing, record, policy)
    return False
