# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

try:
    import pagecapture  # noqa: F401
except ImportError:
    raise ImportError("pagecapture is not installed. Run: pip install -e '.[test]'") from None

import pytest

from pagecapture.browser_session import BrowserSession, NavigationResult


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real Chromium launches in unit tests.

    Tests that need Playwright objects patch ``async_playwright`` in the
    module under test; that patch takes priority over this fixture.
    Opt out with ``@pytest.mark.allow_real_browser``.
    """
    if "allow_real_browser" in request.keywords:
        return

    def _no_real_playwright():
        raise RuntimeError("Test tried to start a real Playwright instance. Patch 'async_playwright' in your test.")

    monkeypatch.setattr("pagecapture.browser_session.async_playwright", _no_real_playwright)
    monkeypatch.setattr("pagecapture.browser_pool.async_playwright", _no_real_playwright)


@pytest.fixture
def mock_session() -> MagicMock:
    """A spec'd BrowserSession mock with async collaborator methods."""
    sess = MagicMock(spec=BrowserSession)
    sess.navigate = AsyncMock(return_value=NavigationResult(strategy="load", http_status=200))
    sess.press_key = AsyncMock()
    sess.evaluate = AsyncMock(return_value=None)
    sess.wait_for_selector = AsyncMock(return_value=False)
    sess.stop = AsyncMock()
    return sess


@pytest.fixture
def storage(tmp_path: Path) -> Path:
    d = tmp_path / "job"
    d.mkdir()
    return d
