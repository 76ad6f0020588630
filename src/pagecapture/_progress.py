# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Progress indicators for CLI output.

Uses a ``rich`` spinner on interactive terminals and stays silent when
stderr is piped.
"""

from __future__ import annotations

import contextlib
import sys
from collections.abc import Generator

from rich.console import Console


@contextlib.contextmanager
def status_spinner(msg: str) -> Generator[None, None, None]:
    """Context manager showing a spinner with *msg* while active.

    Silent when stderr is not a TTY (piped output).
    """
    if not sys.stderr.isatty():
        yield
        return

    console = Console(stderr=True)
    with console.status(msg):
        yield


def print_step(msg: str) -> None:
    """Print a step message to stderr (only when interactive)."""
    if sys.stderr.isatty():
        Console(stderr=True).print(msg, highlight=False)
