# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for feedharvest.logging_config (structlog + stdlib bridge)."""

from __future__ import annotations

import json
import logging
import sys

import pytest
import structlog

from feedharvest.logging_config import bind_run, configure


@pytest.fixture(autouse=True)
def _reset_logging():
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    noisy = {name: logging.getLogger(name).level for name in ("httpx", "httpcore", "asyncio")}
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    for name, level in noisy.items():
        logging.getLogger(name).setLevel(level)
    structlog.reset_defaults()


class TestConsoleRenderer:
    def test_single_stderr_handler(self):
        configure(json_output=False)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].stream is sys.stderr

    def test_output_is_human_readable(self, capsys):
        configure(json_output=False)
        logging.getLogger("feedharvest.test").warning("scan %s", "started")
        err = capsys.readouterr().err
        assert "scan started" in err
        assert "warn" in err.lower()
        assert not err.strip().startswith("{")


class TestJSONRenderer:
    def test_stdlib_record_rendered_as_json(self, capsys):
        configure(json_output=True)
        logging.getLogger("feedharvest.harvest").info("Harvest finished: state=%s", "done")
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed["event"] == "Harvest finished: state=done"
        assert parsed["logger"] == "feedharvest.harvest"
        assert parsed["level"] == "info"
        assert "timestamp" in parsed

    def test_contextvars_merged(self, capsys):
        configure(json_output=True)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(run_id="run-42")
        try:
            structlog.get_logger("feedharvest.ctx").info("ctx test")
            parsed = json.loads(capsys.readouterr().err.strip())
            assert parsed["run_id"] == "run-42"
        finally:
            structlog.contextvars.clear_contextvars()


class TestRunContext:
    def test_bind_run_tags_every_line(self, capsys):
        configure(json_output=True)
        try:
            run_id = bind_run("scan", "https://shop.example.com/tag/toys")
            logging.getLogger("feedharvest.runner").info("Loaded page")
            parsed = json.loads(capsys.readouterr().err.strip())
            assert parsed["run_id"] == run_id
            assert parsed["command"] == "scan"
            assert parsed["url"] == "https://shop.example.com/tag/toys"
        finally:
            structlog.contextvars.clear_contextvars()

    def test_bind_run_replaces_previous_context(self):
        try:
            first = bind_run("scan", "https://a")
            second = bind_run("extract")
            assert first != second
            context = structlog.contextvars.get_contextvars()
            assert context == {"run_id": second, "command": "extract"}
        finally:
            structlog.contextvars.clear_contextvars()

    def test_explicit_stream(self):
        import io

        buffer = io.StringIO()
        configure(json_output=True, stream=buffer)
        logging.getLogger("feedharvest.test").warning("to buffer")
        assert json.loads(buffer.getvalue().strip())["event"] == "to buffer"


class TestLevels:
    def test_default_level_is_info(self):
        configure()
        assert logging.getLogger().level == logging.INFO

    def test_invalid_level_falls_back_to_info(self):
        configure(level="LOUD")
        assert logging.getLogger().level == logging.INFO

    def test_noisy_loggers_capped(self):
        configure(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_debug_leaves_noisy_loggers_alone(self):
        logging.getLogger("httpx").setLevel(logging.NOTSET)
        configure(level="debug")
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.NOTSET

    def test_no_handler_stacking(self):
        configure(json_output=False)
        configure(json_output=True)
        configure(json_output=False)
        assert len(logging.getLogger().handlers) == 1
