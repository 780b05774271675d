# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Feed Harvest exception hierarchy.

All package errors inherit from FeedHarvestError. The extraction core itself
never raises on partial or empty results; these are raised by the browser
layer, the sink, configuration loading, and caller-level orchestration.
"""

from __future__ import annotations


class FeedHarvestError(Exception):
    """Base exception for all Feed Harvest errors."""


class BrowserError(FeedHarvestError):
    """Browser session launch, navigation, or interaction failure."""


class ConfigError(FeedHarvestError):
    """Missing or malformed configuration value."""


class EmptyExtractionError(FeedHarvestError):
    """No anchors appeared before the wait budget ran out.

    ``reason`` is ``"blocked"`` when the page looks like an anti-bot or WAF
    interstitial, ``"not_rendered"`` otherwise.
    """

    def __init__(self, message: str, *, reason: str = "not_rendered", url: str = "") -> None:
        super().__init__(message)
        self.reason = reason
        self.url = url


class SinkError(FeedHarvestError):
    """Downstream delivery failed (transport error or non-2xx response)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
