# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Anchor selection and key derivation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote, urlsplit

from .dom_tree import LiveTreeAccessor

# Tag tiles on a category page link to /tag/<slug>
TAG_ANCHOR_XPATH = './/a[starts-with(@href, "/tag/")]'


def derive_key(raw: str | None, prefix: str = "") -> str:
    """Turn an attribute value into a record key.

    "/tag/toys?ref=home" with prefix "/tag/" -> "toys". Absolute URLs are
    reduced to their path first; empty or prefix-only values yield "".
    """
    if not raw:
        return ""
    path = urlsplit(raw.strip()).path
    if prefix and path.startswith(prefix):
        path = path[len(prefix) :]
    return unquote(path).strip("/").strip()


@dataclass(frozen=True, slots=True)
class AnchorSpec:
    """Which nodes are anchors and how their key is read."""

    selector: str = TAG_ANCHOR_XPATH
    key_attribute: str = "href"
    key_prefix: str = "/tag/"

    async def key_of(self, tree: LiveTreeAccessor, node: Any) -> str:
        return derive_key(await tree.attribute_of(node, self.key_attribute), self.key_prefix)
