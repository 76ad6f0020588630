# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Best-effort page count from the viewer's "page X of N" indicator.

The count only sizes the scroll budget; any failure yields 0 and the
pipeline falls back to a fixed budget.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from .config import CaptureConfig

if TYPE_CHECKING:
    from .browser_session import BrowserSession

logger = logging.getLogger(__name__)

_OF_PATTERN = re.compile(r"(\d+)\s*of\s*(\d+)", re.IGNORECASE)
_INT_PATTERN = re.compile(r"\d+")

_INDICATOR_TEXT_JS = """(selector) => {
  const el = document.querySelector(selector);
  return el ? (el.textContent || '').trim() : null;
}"""


def parse_page_indicator(text: str | None) -> int:
    """Extract the total page count from indicator text.

    "3 of 12" → 12; otherwise the first integer; otherwise 0.
    """
    if not text:
        return 0
    m = _OF_PATTERN.search(text)
    if m:
        return int(m.group(2))
    m = _INT_PATTERN.search(text)
    if m:
        return int(m.group(0))
    return 0


class PageCountProbe:
    def __init__(self, config: CaptureConfig | None = None) -> None:
        self._config = config or CaptureConfig()

    async def estimate(self, session: BrowserSession) -> int:
        """Return the estimated page count (>= 0). Never raises."""
        selector = self._config.page_indicator_selector
        try:
            found = await session.wait_for_selector(selector, self._config.probe_timeout_ms)
            if not found:
                logger.info("Page indicator not found within %dms", self._config.probe_timeout_ms)
                return 0
            text = await session.evaluate(_INDICATOR_TEXT_JS, selector)
        except Exception:
            logger.warning("Page count probe failed", exc_info=True)
            return 0

        total = parse_page_indicator(text if isinstance(text, str) else None)
        logger.info("Page indicator %r → %d page(s)", text, total)
        return total
