# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Capture: rebuild view-only hosted documents as PDFs.

Drives a headless viewer session, intercepts the viewer's per-page image
requests, downloads one image per page and reassembles them into a PDF:
- CapturedPageRequest: a normalized page-image URL in discovery order
- DownloadedPage: a captured request plus its persisted payload (or failure)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class CapturedPageRequest:
    """A page-image request observed on the rendering surface."""

    url: str  # normalized (canonical width/format)
    sequence: int  # 0-based discovery index, contiguous per job
    page_number: int | None = None  # page parameter embedded in the URL, if parseable

    @property
    def ordinal(self) -> int:
        """1-based page position used for file names and user-facing reports."""
        return self.sequence + 1


@dataclass(frozen=True, slots=True)
class DownloadedPage:
    """Result of fetching one captured request.

    Exactly one of ``path`` / ``error`` is set.
    """

    request: CapturedPageRequest
    path: Path | None = None
    content_type: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.path is not None and self.error is None

    @property
    def sequence(self) -> int:
        return self.request.sequence


__all__ = ["CapturedPageRequest", "DownloadedPage"]
