# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""RequestInterceptor — passive collector of the viewer's page-image requests.

Registered on the session before navigation. Every outbound request URL
is tested against the page-image pattern (image-serving path marker +
page parameter + format parameter); matches are normalized to the
canonical lossless format and width, then appended if unseen.

The accumulated set is append-only and owned here; other stages only see
the immutable tuple returned by ``snapshot()`` once the capture window is
closed.
"""

from __future__ import annotations

import logging
from urllib.parse import unquote_plus, urlsplit, urlunsplit

from . import CapturedPageRequest
from .config import CaptureConfig

logger = logging.getLogger(__name__)


def _split_query(query: str) -> list[tuple[str, str, str | None]]:
    """Split a raw query into ``(raw_name, name, raw_value)`` triples.

    ``name`` is the decoded parameter name; ``raw_name`` and ``raw_value``
    keep the original encoding. ``raw_value`` is None for bare flags
    (``?a&b=1``).
    """
    params: list[tuple[str, str, str | None]] = []
    for part in query.split("&"):
        if not part:
            continue
        raw_name, sep, value = part.partition("=")
        params.append((raw_name, unquote_plus(raw_name), value if sep else None))
    return params


def _join_query(params: list[tuple[str, str, str | None]]) -> str:
    return "&".join(raw_name if value is None else f"{raw_name}={value}" for raw_name, _name, value in params)


class RequestInterceptor:
    """Filter, normalize and deduplicate page-image request URLs."""

    def __init__(self, config: CaptureConfig | None = None, *, job_id: str = "") -> None:
        self._config = config or CaptureConfig()
        self._job_id = job_id
        self._seen: set[str] = set()
        self._entries: list[CapturedPageRequest] = []
        self._closed = False
        self._ignored_after_close = 0

    # ── Classification ───────────────────────────────────────────────

    def matches(self, url: str) -> bool:
        """True when *url* looks like a viewer page-image request."""
        try:
            parts = urlsplit(url)
        except ValueError:
            return False
        if self._config.image_path_marker not in parts.path:
            return False
        names = {name for _raw, name, _value in _split_query(parts.query)}
        return self._config.page_param in names and self._config.format_param in names

    def normalize(self, url: str) -> str:
        """Force the lossless format value and canonical width.

        Only those two parameters are rewritten; every other parameter keeps
        its original position and encoding. A missing width parameter is
        appended. Parameter order is not canonicalized, so the same page
        requested with its parameters in a different order yields a
        different normalized URL and is not deduplicated.
        """
        cfg = self._config
        parts = urlsplit(url)
        params = _split_query(parts.query)

        has_width = False
        for i, (raw_name, name, _value) in enumerate(params):
            if name == cfg.format_param:
                params[i] = (raw_name, name, cfg.lossless_format_value)
            elif name == cfg.width_param:
                params[i] = (raw_name, name, str(cfg.canonical_width))
                has_width = True
        if not has_width:
            params.append((cfg.width_param, cfg.width_param, str(cfg.canonical_width)))

        return urlunsplit((parts.scheme, parts.netloc, parts.path, _join_query(params), parts.fragment))

    def page_number(self, url: str) -> int | None:
        """Parse the embedded page parameter, or None."""
        for _raw, name, value in _split_query(urlsplit(url).query):
            if name == self._config.page_param and value is not None:
                try:
                    return int(unquote_plus(value))
                except ValueError:
                    return None
        return None

    # ── Observation ──────────────────────────────────────────────────

    def observe(self, url: str) -> CapturedPageRequest | None:
        """Record *url* if it is a new page-image request.

        Returns the new entry, or None when the URL does not match, is a
        duplicate after normalization, or arrives after close().
        """
        if not self.matches(url):
            return None
        if self._closed:
            self._ignored_after_close += 1
            logger.debug("Capture window closed, ignoring %.200s", url)
            return None
        normalized = self.normalize(url)
        if normalized in self._seen:
            return None
        entry = CapturedPageRequest(
            url=normalized,
            sequence=len(self._entries),
            page_number=self.page_number(normalized),
        )
        self._seen.add(normalized)
        self._entries.append(entry)
        logger.debug("Captured page request #%d (page=%s) job=%s", entry.sequence, entry.page_number, self._job_id)
        return entry

    def __call__(self, url: str) -> None:
        """Request-observer entry point (``session.on_request(interceptor)``)."""
        self.observe(url)

    # ── Capture window ───────────────────────────────────────────────

    @property
    def count(self) -> int:
        return len(self._entries)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """End the capture window; later requests are ignored."""
        if not self._closed:
            self._closed = True
            logger.info("Capture window closed with %d page request(s) job=%s", len(self._entries), self._job_id)

    def snapshot(self) -> tuple[CapturedPageRequest, ...]:
        """Immutable view of the captured requests.

        Discovery order by default. With ``order_by_page_number`` the
        entries are stable-sorted by their page parameter (entries without
        one go last, in discovery order) and renumbered from 0.
        """
        entries = list(self._entries)
        if not self._config.order_by_page_number:
            return tuple(entries)

        ordered = sorted(
            entries,
            key=lambda e: (e.page_number is None, e.page_number if e.page_number is not None else 0, e.sequence),
        )
        return tuple(
            CapturedPageRequest(url=e.url, sequence=i, page_number=e.page_number) for i, e in enumerate(ordered)
        )
