# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge. CLI: ConsoleRenderer, HTTP: JSONRenderer.

Optional append-only JSON log file (one file per day, 30 kept) for the
log viewer endpoint.

Leaf module — no pagecapture imports. Safe to call early in startup.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from collections import deque
from pathlib import Path

import structlog

LOG_FILE_NAME = "capture.log"
MAX_LOG_FILES = 30


def configure(*, json_output: bool = False, level: str = "INFO", log_dir: str | Path | None = None) -> None:
    """Configure structlog with stdlib bridge.

    Args:
        json_output: True for JSON lines (HTTP mode), False for human-readable (CLI).
        level: Root logger level (default INFO).
        log_dir: When set, also append JSON lines to ``<log_dir>/capture.log``,
            rotated at midnight with ``MAX_LOG_FILES`` backups.
    """
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for old in root.handlers:
        old.close()
    root.handlers.clear()
    root.addHandler(handler)

    if log_dir is not None:
        root.addHandler(_file_handler(Path(log_dir), shared_processors))

    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def _file_handler(log_dir: Path, shared_processors: list) -> logging.Handler:
    """JSON-lines file handler, always JSON regardless of the console renderer."""
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        when="midnight",
        backupCount=MAX_LOG_FILES,
        encoding="utf-8",
        utc=True,
    )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            foreign_pre_chain=shared_processors,
        )
    )
    return handler


def read_recent_logs(log_dir: str | Path, limit: int = 200) -> list[dict]:
    """Return up to *limit* most recent entries from the current log file.

    Lines that are not valid JSON are returned as ``{"event": <raw line>}``.
    A missing file yields an empty list.
    """
    path = Path(log_dir) / LOG_FILE_NAME
    if limit <= 0 or not path.exists():
        return []
    with path.open(encoding="utf-8", errors="replace") as f:
        lines = deque(f, maxlen=limit)
    entries: list[dict] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            entry = {"event": line}
        if not isinstance(entry, dict):
            entry = {"event": entry}
        entries.append(entry)
    return entries
