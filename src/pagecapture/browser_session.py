# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright browser session for document capture.

Owns one isolated BrowserContext + Page, its navigation to the target
viewer, and the thin input/evaluation surface the capture stages need.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from typing import Any

from playwright.async_api import (
    Browser,
    BrowserContext,
    Dialog,
    Page,
    Playwright,
    Request,
    Route,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import LaunchError, NavigationError

logger = logging.getLogger(__name__)

# Dangerous URL schemes blocked at context level.
BLOCKED_URL_SCHEMES = (
    "chrome://",
    "devtools://",
    "chrome-extension://",
    "file://",
    "view-source://",
)
DEFAULT_LOCALE = "en-US"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(frozen=True, slots=True)
class BrowserConfig:
    """Browser launch configuration."""

    headless: bool = True
    locale: str = DEFAULT_LOCALE
    viewport_width: int = 1280
    viewport_height: int = 1024
    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 60_000
    wait_strategy: str = "hybrid"  # "hybrid" | "networkidle" | "load"
    networkidle_budget_ms: int = 15_000  # hybrid mode: networkidle attempt budget
    no_sandbox: bool = False  # containers without user namespaces

    def __post_init__(self) -> None:
        if self.wait_strategy not in ("hybrid", "networkidle", "load"):
            raise ValueError(f"unknown wait_strategy: {self.wait_strategy!r}")
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be > 0, got {self.timeout_ms}")


@dataclass(frozen=True, slots=True)
class NavigationResult:
    """Result of a page navigation with strategy metadata."""

    strategy: str  # "networkidle" | "load"
    http_status: int | None = None


_BROWSER_DEAD_PATTERNS = (
    "target closed",
    "target page",
    "browser has been closed",
    "connection closed",
    "browser disconnected",
)


def _is_browser_dead_error(exc: BaseException) -> bool:
    """Detect browser crash/disconnect errors."""
    msg = str(exc).lower()
    return any(p in msg for p in _BROWSER_DEAD_PATTERNS)


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds — Chromium ~140MB download


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process.

    Returns True if install succeeded, False otherwise.
    """
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found — running 'playwright install chromium' …")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
        if proc.returncode == 0:
            logger.info("Chromium installed successfully")
            return True
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except Exception:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Return hardened, non-interactive Chromium launch arguments.

    Shared by ``BrowserSession`` and ``SessionPool``.
    """
    args = [
        "--disable-blink-features=AutomationControlled",
        f"--lang={config.locale}",
        "--disable-extensions",
        "--disable-plugins",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-gpu",
        "--no-first-run",
        "--no-default-browser-check",
        "--deny-permission-prompts",
        "--disable-breakpad",
        "--no-pings",
        "--disable-component-update",
        "--noerrdialogs",
        "--disable-prompt-on-repost",
    ]
    if config.no_sandbox:
        args += ["--no-sandbox", "--disable-setuid-sandbox"]
    return args


async def launch_browser(playwright: Playwright, config: BrowserConfig) -> Browser:
    """Launch Chromium, auto-installing on first 'executable doesn't exist' error.

    Raises:
        LaunchError: the browser could not be started.
    """
    args = chromium_launch_args(config)
    try:
        return await playwright.chromium.launch(headless=config.headless, args=args)
    except Exception as exc:
        if "executable doesn't exist" not in str(exc).lower():
            raise LaunchError(f"Chromium failed to launch: {exc}") from exc
        if not await _auto_install_chromium():
            raise LaunchError(
                "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
            ) from exc
        try:
            return await playwright.chromium.launch(headless=config.headless, args=args)
        except Exception as retry_exc:
            raise LaunchError(f"Chromium failed to launch after install: {retry_exc}") from retry_exc


class BrowserSession:
    """One rendering surface: an isolated context with a single page."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._owns_browser: bool = True  # False when created via start_from_pool()

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started. Use async with or call start().")
        return self._page

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise RuntimeError("Browser session not started.")
        return self._context

    async def _create_context(self, browser: Browser) -> None:
        """Create BrowserContext + Page + event handlers on given browser."""
        try:
            self._context = await browser.new_context(
                viewport={
                    "width": self.config.viewport_width,
                    "height": self.config.viewport_height,
                },
                locale=self.config.locale,
                user_agent=self.config.user_agent,
                service_workers="block",
                permissions=[],
                accept_downloads=False,
            )
            self._context.on("dialog", self._on_dialog)
            self._page = await self._context.new_page()
            await self._install_scheme_block_route()
        except PlaywrightError as exc:
            raise LaunchError(f"Failed to create browser context: {exc}") from exc

    async def start(self) -> None:
        """Launch a dedicated browser and create the page (standalone mode)."""
        try:
            self._playwright = await async_playwright().start()
        except Exception as exc:
            raise LaunchError(f"Playwright failed to start: {exc}") from exc
        try:
            self._browser = await launch_browser(self._playwright, self.config)
            await self._create_context(self._browser)
        except BaseException:
            await self.stop()
            raise
        logger.info("Browser session started (headless=%s)", self.config.headless)

    async def start_from_pool(self, browser: Browser) -> None:
        """Start session using a shared browser (pool mode).

        The browser is owned by the pool — stop() will only close the
        context, not the browser or playwright instance.
        """
        self._owns_browser = False
        self._browser = browser
        await self._create_context(browser)
        logger.debug("Browser session started from pool")

    async def _install_scheme_block_route(self) -> None:
        """Abort navigations to local or browser-internal schemes."""

        async def _handler(route: Route) -> None:
            url = route.request.url
            for scheme in BLOCKED_URL_SCHEMES:
                if url.startswith(scheme):
                    logger.debug("Scheme blocked: %s", url)
                    await route.abort("blockedbyclient")
                    return
            await route.continue_()

        await self.context.route("**/*", _handler)

    async def stop(self) -> None:
        """Close context (and browser in standalone mode). Safe on a crashed browser."""
        if self._context:
            with suppress(Exception):
                await self._context.close()
            self._context = None
        self._page = None

        if self._owns_browser:
            if self._browser:
                with suppress(Exception):
                    await self._browser.close()
                self._browser = None
            if self._playwright:
                with suppress(Exception):
                    await self._playwright.stop()
                self._playwright = None
        else:
            self._browser = None

        logger.debug("Browser session stopped (owned_browser=%s)", self._owns_browser)

    async def __aenter__(self) -> BrowserSession:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    async def _on_dialog(self, dialog: Dialog) -> None:
        """Dismiss every JS dialog so the session never blocks on user input."""
        try:
            logger.info("JS dialog dismissed: type=%s message=%.100s", dialog.type, dialog.message)
            await dialog.dismiss()
        except Exception:
            logger.debug("JS dialog dismiss failed", exc_info=True)

    # ── Collaborator surface ─────────────────────────────────────────

    def on_request(self, callback: Callable[[str], object]) -> None:
        """Register a synchronous observer called with every outbound request URL.

        Must be registered before navigate(); it stays attached for the
        lifetime of the page.
        """

        def _listener(request: Request) -> None:
            try:
                callback(request.url)
            except Exception:
                logger.warning("Request observer failed for %.200s", request.url, exc_info=True)

        self.page.on("request", _listener)

    async def navigate(self, url: str) -> NavigationResult:
        """Navigate to *url* and wait for the network to go quiet.

        Strategies:
        - "networkidle": goto with networkidle wait
        - "load": goto with load event only
        - "hybrid" (default): goto with load, then attempt networkidle
          within budget; proceeds on timeout

        Raises:
            NavigationError: timeout, network failure, or HTTP status >= 400.
        """
        strategy = self.config.wait_strategy
        wait_until = "networkidle" if strategy == "networkidle" else "load"
        try:
            response = await self.page.goto(url, wait_until=wait_until, timeout=self.config.timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise NavigationError(
                f"Navigation timed out after {self.config.timeout_ms}ms", url=url
            ) from exc
        except PlaywrightError as exc:
            raise NavigationError(f"Navigation failed: {exc}", url=url) from exc

        status = response.status if response else None
        if status is not None and status >= 400:
            raise NavigationError(f"Target returned HTTP {status}", url=url, http_status=status)

        used_strategy = wait_until
        if strategy == "hybrid":
            used_strategy = await self._await_network_idle()

        logger.info("Navigated to %s (status=%s, strategy=%s)", url, status, used_strategy)
        return NavigationResult(strategy=used_strategy, http_status=status)

    async def _await_network_idle(self) -> str:
        """Attempt networkidle within budget (asyncio.wait for safe cancellation)."""
        idle_task = asyncio.ensure_future(self.page.wait_for_load_state("networkidle"))
        done, _pending = await asyncio.wait(
            {idle_task},
            timeout=self.config.networkidle_budget_ms / 1000,
        )
        if idle_task in done:
            exc = idle_task.exception()
            if exc is None:
                return "networkidle"
            if _is_browser_dead_error(exc):
                raise NavigationError(f"Browser died during navigation: {exc}") from exc
            logger.debug("networkidle completed with error: %s", exc)
            return "load"
        idle_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await idle_task
        logger.info(
            "networkidle budget exceeded (%.1fs), proceeding after load",
            self.config.networkidle_budget_ms / 1000,
        )
        return "load"

    async def press_key(self, key: str) -> None:
        """Press a keyboard key on the page."""
        await self.page.keyboard.press(key)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Evaluate a JS function expression in the page."""
        return await self.page.evaluate(script, arg)

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        """Wait for *selector* to be attached. Returns False on timeout."""
        try:
            await self.page.wait_for_selector(selector, state="attached", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True


@asynccontextmanager
async def create_session(
    config: BrowserConfig | None = None,
) -> AsyncGenerator[BrowserSession, None]:
    """Context manager to create and manage a standalone browser session."""
    session = BrowserSession(config)
    await session.start()
    try:
        yield session
    finally:
        await session.stop()
