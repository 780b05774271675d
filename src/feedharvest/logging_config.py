# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge for CLI runs.

Interactive runs get ConsoleRenderer, scheduled jobs (``--log-json``) get one
JSON object per line. Modules keep using ``logging.getLogger(__name__)``;
their records pass through the same processor chain as structlog loggers,
so the run context bound by ``bind_run`` shows up on every line.

Leaf module with no feedharvest imports. Call ``configure`` once from the
CLI before any run.
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import TextIO

import structlog

# Chatty third-party loggers capped at WARNING unless running at DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _build_handler(json_output: bool, stream: TextIO) -> logging.Handler:
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=_shared_processors(),
        )
    )
    return handler


def configure(*, json_output: bool = False, level: str = "INFO", stream: TextIO | None = None) -> None:
    """Route stdlib and structlog output through one stderr handler.

    Args:
        json_output: JSON lines for cron / CI jobs, human-readable otherwise.
        level: Root logger level name; unknown names fall back to INFO.
        stream: Output stream (default ``sys.stderr`` at call time).
    """
    structlog.configure(
        processors=[*_shared_processors(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_build_handler(json_output, stream or sys.stderr))
    root.setLevel(root_level)

    if root_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def bind_run(command: str, url: str | None = None) -> str:
    """Start a fresh log context for one run. Returns the run id."""
    run_id = uuid.uuid4().hex[:12]
    structlog.contextvars.clear_contextvars()
    context = {"run_id": run_id, "command": command}
    if url:
        context["url"] = url
    structlog.contextvars.bind_contextvars(**context)
    return run_id
