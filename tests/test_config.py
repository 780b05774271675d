# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from feedharvest.config import (
    browser_config_from_env,
    env_bool,
    env_float,
    env_str,
    harvest_config_from_env,
    load_sink_config,
    scan_config_from_env,
)
from feedharvest.errors import ConfigError
from feedharvest.harvest import HarvestConfig
from feedharvest.tile_resolver import TileStrategy

_ENV_NAMES = (
    "FEEDHARVEST_WEBHOOK_URL",
    "FEEDHARVEST_AUTH_TOKEN",
    "SHEETS_WEBHOOK_URL",
    "SHEETS_AUTH_TOKEN",
    "FEEDHARVEST_SINK_TIMEOUT_S",
    "FEEDHARVEST_TILE_STRATEGY",
    "FEEDHARVEST_ANCHOR_WAIT_S",
    "FEEDHARVEST_POLL_S",
    "FEEDHARVEST_HARVEST_SETTLE_S",
    "FEEDHARVEST_HARVEST_POLL_S",
    "FEEDHARVEST_HARVEST_BOTTOM_WAIT_S",
    "FEEDHARVEST_HARVEST_CEILING_S",
    "FEEDHARVEST_HEADLESS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


class TestEnvHelpers:
    def test_env_str_first_non_empty(self, monkeypatch):
        monkeypatch.setenv("FEEDHARVEST_WEBHOOK_URL", "  ")
        monkeypatch.setenv("SHEETS_WEBHOOK_URL", "https://legacy")
        assert env_str("FEEDHARVEST_WEBHOOK_URL", "SHEETS_WEBHOOK_URL") == "https://legacy"
        assert env_str("FEEDHARVEST_AUTH_TOKEN", default="none") == "none"

    def test_env_float(self, monkeypatch):
        monkeypatch.setenv("FEEDHARVEST_POLL_S", "0.25")
        assert env_float("FEEDHARVEST_POLL_S", 1.0) == 0.25

    def test_env_float_ignores_garbage(self, monkeypatch, caplog):
        monkeypatch.setenv("FEEDHARVEST_POLL_S", "fast")
        assert env_float("FEEDHARVEST_POLL_S", 1.0) == 1.0
        assert "non-numeric" in caplog.text

    @pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("false", False), ("0", False), ("", True)])
    def test_env_bool(self, monkeypatch, raw, expected):
        monkeypatch.setenv("FEEDHARVEST_HEADLESS", raw)
        assert env_bool("FEEDHARVEST_HEADLESS", True) is expected


class TestSinkConfig:
    def test_from_new_names(self, monkeypatch):
        monkeypatch.setenv("FEEDHARVEST_WEBHOOK_URL", "https://hooks.example.com/exec")
        monkeypatch.setenv("FEEDHARVEST_AUTH_TOKEN", "s3cret")
        monkeypatch.setenv("FEEDHARVEST_SINK_TIMEOUT_S", "5")
        config = load_sink_config()
        assert config.webhook_url == "https://hooks.example.com/exec"
        assert config.token == "s3cret"
        assert config.timeout_s == 5.0

    def test_legacy_names(self, monkeypatch):
        monkeypatch.setenv("SHEETS_WEBHOOK_URL", "https://legacy")
        monkeypatch.setenv("SHEETS_AUTH_TOKEN", "old")
        config = load_sink_config()
        assert (config.webhook_url, config.token) == ("https://legacy", "old")

    def test_arguments_win(self, monkeypatch):
        monkeypatch.setenv("FEEDHARVEST_WEBHOOK_URL", "https://env")
        monkeypatch.setenv("FEEDHARVEST_AUTH_TOKEN", "env")
        config = load_sink_config("https://flag", "flag")
        assert (config.webhook_url, config.token) == ("https://flag", "flag")

    def test_missing_url(self, monkeypatch):
        monkeypatch.setenv("FEEDHARVEST_AUTH_TOKEN", "s3cret")
        with pytest.raises(ConfigError, match="webhook URL"):
            load_sink_config()

    def test_missing_token(self, monkeypatch):
        monkeypatch.setenv("FEEDHARVEST_WEBHOOK_URL", "https://hooks.example.com/exec")
        with pytest.raises(ConfigError, match="auth token"):
            load_sink_config()


class TestRunConfigs:
    def test_scan_defaults(self):
        config = scan_config_from_env()
        assert config.strategy is TileStrategy.SIBLING_EXCLUSIVITY
        assert config.anchor_wait_s == 120.0

    def test_scan_overrides(self, monkeypatch):
        monkeypatch.setenv("FEEDHARVEST_TILE_STRATEGY", "content_signal")
        monkeypatch.setenv("FEEDHARVEST_ANCHOR_WAIT_S", "30")
        config = scan_config_from_env()
        assert config.strategy is TileStrategy.CONTENT_SIGNAL
        assert config.anchor_wait_s == 30.0

    def test_unknown_strategy(self, monkeypatch):
        monkeypatch.setenv("FEEDHARVEST_TILE_STRATEGY", "closest")
        with pytest.raises(ConfigError, match="closest"):
            scan_config_from_env()

    def test_harvest_overrides_keep_base(self, monkeypatch):
        monkeypatch.setenv("FEEDHARVEST_HARVEST_CEILING_S", "60")
        config = harvest_config_from_env(HarvestConfig(overlap_px=50.0))
        assert config.ceiling_s == 60.0
        assert config.overlap_px == 50.0
        assert config.bottom_wait_s == HarvestConfig().bottom_wait_s

    def test_headless_override(self, monkeypatch):
        monkeypatch.setenv("FEEDHARVEST_HEADLESS", "no")
        assert browser_config_from_env().headless is False
