# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Paced synthetic key presses that force the viewer to lazy-load pages.

The loop always runs its full iteration budget. Whether capture is likely
complete is only reported: with a ``progress`` callable (the interceptor's
capture count) the driver counts trailing ticks without a new capture.
A long idle tail suggests every page was requested; a short one on a slow
network may mean the budget ended while pages were still arriving.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .config import CaptureConfig

if TYPE_CHECKING:
    from .browser_session import BrowserSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScrollReport:
    iterations: int
    captured: int  # progress value after the last tick (0 without progress)
    idle_ticks: int  # trailing ticks with no new capture
    likely_complete: bool


class ScrollDriver:
    def __init__(self, config: CaptureConfig | None = None) -> None:
        self._config = config or CaptureConfig()

    def iterations_for(self, estimated_pages: int) -> int:
        """Scroll budget: ``multiplier × estimate``, fallback constant when unknown."""
        if estimated_pages <= 0:
            return self._config.fallback_scroll_iterations
        return self._config.scroll_multiplier * estimated_pages

    async def advance(
        self,
        session: BrowserSession,
        iterations: int,
        delay_ms: int,
        *,
        progress: Callable[[], int] | None = None,
    ) -> ScrollReport:
        """Press the scroll key *iterations* times, sleeping *delay_ms* after each."""
        key = self._config.scroll_key
        last = progress() if progress else 0
        idle = 0
        for _ in range(iterations):
            await session.press_key(key)
            await asyncio.sleep(delay_ms / 1000)
            if progress is None:
                continue
            current = progress()
            if current == last:
                idle += 1
            else:
                idle = 0
                last = current

        likely_complete = progress is not None and idle >= self._config.idle_ticks_threshold
        logger.info(
            "Scroll complete: %d iteration(s), %d captured, %d idle tick(s), likely_complete=%s",
            iterations,
            last,
            idle,
            likely_complete,
        )
        return ScrollReport(iterations=iterations, captured=last, idle_ticks=idle, likely_complete=likely_complete)
