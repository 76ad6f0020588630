# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""SessionPool — shared Playwright Browser with per-job BrowserContext isolation.

A single Chromium process hosts up to ``max_sessions`` isolated contexts.
Admission is gated by ``asyncio.Semaphore`` (CPython FIFO-guaranteed), so
excess jobs wait instead of spawning more sandboxes.

Lifecycle follows the ``AsyncContextManager`` pattern::

    async with SessionPool(config=BrowserConfig()) as pool:
        async with pool.session("job-1") as session:
            await session.navigate("https://example.com")

Dependencies: browser_session.py only.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from types import TracebackType

from playwright.async_api import Browser, Playwright, async_playwright

from .browser_session import BrowserConfig, BrowserSession, launch_browser
from .errors import LaunchError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Health snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PoolHealth:
    """Immutable snapshot of pool state for monitoring."""

    active: int
    max_sessions: int
    waiting: int
    browser_connected: bool


# ---------------------------------------------------------------------------
# SessionPool
# ---------------------------------------------------------------------------

_DEFAULT_MAX_SESSIONS = 3


class SessionPool:
    """Shared browser with bounded, per-job context isolation."""

    def __init__(
        self,
        *,
        max_sessions: int = _DEFAULT_MAX_SESSIONS,
        config: BrowserConfig | None = None,
    ) -> None:
        if max_sessions <= 0:
            raise ValueError(f"max_sessions must be > 0, got {max_sessions}")
        self._max_sessions = max_sessions
        self._config = config or BrowserConfig()

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._semaphore: asyncio.Semaphore | None = None
        self._sessions: dict[str, tuple[BrowserSession, float]] = {}
        self._waiting = 0
        self._relaunch_lock = asyncio.Lock()

    # ── AsyncContextManager ──────────────────────────────────────────

    async def __aenter__(self) -> SessionPool:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    async def start(self) -> None:
        """Start playwright and the shared browser.

        Raises:
            LaunchError: playwright or Chromium could not be started.
        """
        try:
            self._playwright = await async_playwright().start()
        except Exception as exc:
            raise LaunchError(f"Playwright failed to start: {exc}") from exc
        try:
            self._browser = await launch_browser(self._playwright, self._config)
        except LaunchError:
            await self._playwright.stop()
            self._playwright = None
            raise
        self._semaphore = asyncio.Semaphore(self._max_sessions)
        logger.info("SessionPool started (max_sessions=%d)", self._max_sessions)

    # ── Resource management ──────────────────────────────────────────

    @asynccontextmanager
    async def session(self, session_id: str, *, on_admitted: Callable[[], Awaitable[None]] | None = None):
        """Acquire a fresh BrowserSession for *session_id*, closing it on exit.

        Waits (without timeout) while the pool is at capacity. *on_admitted*
        runs once a slot is held, before the browser context is created.
        """
        if self._semaphore is None:
            raise RuntimeError("SessionPool not started. Use async with or call start().")
        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1
        try:
            if on_admitted is not None:
                await on_admitted()
            browser = await self._ensure_browser()
            sess = BrowserSession(self._config)
            await sess.start_from_pool(browser)
            self._sessions[session_id] = (sess, time.monotonic())
            logger.info("Pool created session: %s (active=%d)", session_id, len(self._sessions))
            try:
                yield sess
            finally:
                self._sessions.pop(session_id, None)
                with suppress(Exception):
                    await sess.stop()
                logger.info("Pool released session: %s", session_id)
        finally:
            self._semaphore.release()

    async def _ensure_browser(self) -> Browser:
        """Return the shared browser, relaunching once if it disconnected."""
        async with self._relaunch_lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._playwright is None:
                raise LaunchError("SessionPool has been shut down")
            logger.warning("Shared browser disconnected, relaunching")
            if self._browser is not None:
                with suppress(Exception):
                    await self._browser.close()
            self._browser = await launch_browser(self._playwright, self._config)
            return self._browser

    # ── Monitoring ───────────────────────────────────────────────────

    def health(self) -> PoolHealth:
        """Return a snapshot of pool health."""
        browser_ok = self._browser is not None and self._browser.is_connected()
        return PoolHealth(
            active=len(self._sessions),
            max_sessions=self._max_sessions,
            waiting=self._waiting,
            browser_connected=browser_ok,
        )

    # ── Shutdown ─────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Close all sessions, the browser and playwright."""
        for _sid, (sess, _started) in list(self._sessions.items()):
            with suppress(Exception):
                await sess.stop()
        self._sessions.clear()

        if self._browser:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        if self._playwright:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None

        logger.info("SessionPool shut down")
