# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Environment-driven settings.

Dataclass defaults live next to the code that uses them (ScanConfig,
HarvestConfig, BrowserConfig, SinkConfig). This module only layers
``FEEDHARVEST_*`` environment overrides on top; CLI flags win over both.

The webhook variables also accept the legacy ``SHEETS_WEBHOOK_URL`` /
``SHEETS_AUTH_TOKEN`` names used by the scheduled workflow.
"""

from __future__ import annotations

import logging
import os
from contextlib import suppress
from dataclasses import replace

from .browser_session import BrowserConfig
from .errors import ConfigError
from .harvest import HarvestConfig
from .single_pass import ScanConfig
from .sink import SinkConfig
from .tile_resolver import TileStrategy

logger = logging.getLogger(__name__)

_TRUE = ("1", "true", "yes")
_FALSE = ("0", "false", "no")


def env_str(*names: str, default: str = "") -> str:
    """First non-empty value among *names*."""
    for name in names:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return default


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if raw:
        with suppress(ValueError):
            return float(raw)
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
    return default


def env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    return default


def load_sink_config(webhook_url: str | None = None, token: str | None = None) -> SinkConfig:
    """Resolve webhook URL and token from arguments, then environment."""
    url = webhook_url or env_str("FEEDHARVEST_WEBHOOK_URL", "SHEETS_WEBHOOK_URL")
    auth = token or env_str("FEEDHARVEST_AUTH_TOKEN", "SHEETS_AUTH_TOKEN")
    if not url:
        raise ConfigError("Missing webhook URL (set FEEDHARVEST_WEBHOOK_URL or pass --webhook-url)")
    if not auth:
        raise ConfigError("Missing auth token (set FEEDHARVEST_AUTH_TOKEN or pass --token)")
    return SinkConfig(
        webhook_url=url,
        token=auth,
        timeout_s=env_float("FEEDHARVEST_SINK_TIMEOUT_S", 30.0),
    )


def scan_config_from_env(base: ScanConfig | None = None) -> ScanConfig:
    base = base or ScanConfig()
    strategy = env_str("FEEDHARVEST_TILE_STRATEGY", default=base.strategy.value)
    try:
        tile_strategy = TileStrategy(strategy)
    except ValueError as exc:
        raise ConfigError(f"Unknown tile strategy {strategy!r}") from exc
    return replace(
        base,
        strategy=tile_strategy,
        anchor_wait_s=env_float("FEEDHARVEST_ANCHOR_WAIT_S", base.anchor_wait_s),
        poll_interval_s=env_float("FEEDHARVEST_POLL_S", base.poll_interval_s),
    )


def harvest_config_from_env(base: HarvestConfig | None = None) -> HarvestConfig:
    base = base or HarvestConfig()
    return replace(
        base,
        settle_s=env_float("FEEDHARVEST_HARVEST_SETTLE_S", base.settle_s),
        poll_interval_s=env_float("FEEDHARVEST_HARVEST_POLL_S", base.poll_interval_s),
        bottom_wait_s=env_float("FEEDHARVEST_HARVEST_BOTTOM_WAIT_S", base.bottom_wait_s),
        ceiling_s=env_float("FEEDHARVEST_HARVEST_CEILING_S", base.ceiling_s),
    )


def browser_config_from_env(base: BrowserConfig | None = None) -> BrowserConfig:
    base = base or BrowserConfig()
    return replace(base, headless=env_bool("FEEDHARVEST_HEADLESS", base.headless))
