# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Live document tree capability and its lxml implementation.

The extraction core only talks to a ``LiveTreeAccessor``. The Playwright
accessor (page_tree.py) drives a real browser; ``HtmlTreeAccessor`` wraps a
static lxml tree, used for offline re-extraction of saved HTML and in tests.

Selectors are XPath expressions so the same configuration works on both
sides (lxml ``element.xpath`` and Playwright's ``xpath=`` engine).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import lxml.html

# Elements whose boundaries become line breaks in text_of()
_BLOCK_TAGS = frozenset(
    {
        "address", "article", "aside", "blockquote", "dd", "details", "div", "dl", "dt",
        "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5", "h6",
        "header", "hr", "li", "main", "nav", "ol", "p", "pre", "section", "summary",
        "table", "tbody", "td", "tfoot", "th", "thead", "tr", "ul",
    }
)  # fmt: skip
_SKIP_TEXT_TAGS = frozenset({"script", "style", "noscript", "template"})

DEFAULT_VIEWPORT_HEIGHT = 800


@dataclass(frozen=True, slots=True)
class ViewportMetrics:
    """Scroll state of the scrollable root, in CSS pixels."""

    position: float  # current scroll offset
    extent: float  # visible height
    total_extent: float  # full scrollable height

    @property
    def max_position(self) -> float:
        return max(self.total_extent - self.extent, 0.0)


@runtime_checkable
class LiveTreeAccessor(Protocol):
    """Queryable, mutable document tree driven by one run at a time.

    Node handles are opaque to the core. Every query reflects the current
    render state; handles must not be reused across passes.
    """

    async def query_all(self, selector: str) -> Sequence[Any]: ...

    async def query_within(self, node: Any, selector: str) -> Sequence[Any]: ...

    async def parent_of(self, node: Any) -> Any | None: ...

    async def text_of(self, node: Any) -> str: ...

    async def attribute_of(self, node: Any, name: str) -> str | None: ...

    async def tag_of(self, node: Any) -> str: ...

    async def trigger_render_step(self) -> None: ...

    async def scroll_to(self, position: float) -> None: ...

    async def viewport_metrics(self) -> ViewportMetrics: ...

    def elapsed_time(self) -> float: ...


def relative_xpath(selector: str) -> str:
    """Anchor an absolute ``//...`` expression at the context node."""
    if selector.startswith("//"):
        return "." + selector
    return selector


def block_text(element: Any) -> str:
    """Descendant text with one line per logical block, whitespace-normalized."""
    parts: list[str] = []

    def walk(node: Any) -> None:
        tag = node.tag if isinstance(node.tag, str) else ""
        if not tag:
            return  # comments / processing instructions; tail handled by parent
        tag = tag.lower()
        is_block = tag in _BLOCK_TAGS
        if is_block:
            parts.append("\n")
        if tag == "br":
            parts.append("\n")
        if tag not in _SKIP_TEXT_TAGS:
            if node.text:
                parts.append(node.text)
            for child in node:
                walk(child)
                if child.tail:
                    parts.append(child.tail)
        if is_block:
            parts.append("\n")

    walk(element)
    lines = (" ".join(line.split()) for line in "".join(parts).split("\n"))
    return "\n".join(line for line in lines if line)


class HtmlTreeAccessor:
    """LiveTreeAccessor over an lxml document.

    The document is static, so render steps and scrolling only update
    bookkeeping. ``load_html`` swaps the document in place, which lets a
    caller replay successive saved snapshots of the same page.
    """

    def __init__(
        self,
        root: lxml.html.HtmlElement,
        *,
        viewport_height: float = DEFAULT_VIEWPORT_HEIGHT,
        document_height: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._root = root
        self._viewport_height = float(viewport_height)
        self._document_height = float(document_height) if document_height is not None else self._viewport_height
        self._position = 0.0
        self._clock = clock
        self._started = clock()
        self.render_steps = 0

    @classmethod
    def from_html(cls, html: str, **kwargs: Any) -> HtmlTreeAccessor:
        return cls(lxml.html.document_fromstring(html), **kwargs)

    @property
    def root(self) -> lxml.html.HtmlElement:
        return self._root

    def load_html(self, html: str, *, document_height: float | None = None) -> None:
        """Replace the document with a newer snapshot."""
        self._root = lxml.html.document_fromstring(html)
        if document_height is not None:
            self._document_height = float(document_height)

    async def query_all(self, selector: str) -> list[Any]:
        return [el for el in self._root.xpath(relative_xpath(selector)) if isinstance(el, lxml.html.HtmlElement)]

    async def query_within(self, node: Any, selector: str) -> list[Any]:
        return [el for el in node.xpath(relative_xpath(selector)) if isinstance(el, lxml.html.HtmlElement)]

    async def parent_of(self, node: Any) -> Any | None:
        return node.getparent()

    async def text_of(self, node: Any) -> str:
        return block_text(node)

    async def attribute_of(self, node: Any, name: str) -> str | None:
        return node.get(name)

    async def tag_of(self, node: Any) -> str:
        return node.tag.lower() if isinstance(node.tag, str) else ""

    async def trigger_render_step(self) -> None:
        self.render_steps += 1

    async def scroll_to(self, position: float) -> None:
        max_position = max(self._document_height - self._viewport_height, 0.0)
        self._position = min(max(float(position), 0.0), max_position)

    async def viewport_metrics(self) -> ViewportMetrics:
        return ViewportMetrics(
            position=self._position,
            extent=self._viewport_height,
            total_extent=max(self._document_height, self._viewport_height),
        )

    def elapsed_time(self) -> float:
        return self._clock() - self._started
