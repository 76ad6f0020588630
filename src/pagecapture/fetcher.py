# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""ImageFetcher — download captured page images into job storage.

Each page is fetched and persisted independently: a failure becomes a
``DownloadedPage`` with ``error`` set and never aborts the batch. Fetches
run with bounded parallelism; results always come back in input order and
file names derive from the sequence index, never from completion order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

import httpx

from . import CapturedPageRequest, DownloadedPage
from .config import CaptureConfig
from .errors import PageFetchError

logger = logging.getLogger(__name__)

_EXTENSIONS: dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}
DEFAULT_EXTENSION = "png"


def extension_for(content_type: str) -> str:
    """File extension for a response Content-Type (defaults to png)."""
    mime = content_type.split(";", 1)[0].strip().lower()
    return _EXTENSIONS.get(mime, DEFAULT_EXTENSION)


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


class ImageFetcher:
    """Fetch page images with an injected ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        storage_dir: Path,
        *,
        config: CaptureConfig | None = None,
        job_id: str = "",
    ) -> None:
        self._client = client
        self._storage_dir = Path(storage_dir)
        self._config = config or CaptureConfig()
        self._job_id = job_id

    async def fetch_all(self, requests: Sequence[CapturedPageRequest]) -> list[DownloadedPage]:
        """Fetch every request; output order equals input order."""
        if not requests:
            return []
        semaphore = asyncio.Semaphore(self._config.fetch_concurrency)

        async def _bounded(req: CapturedPageRequest) -> DownloadedPage:
            async with semaphore:
                return await self._fetch_one(req)

        pages = await asyncio.gather(*(_bounded(r) for r in requests))
        ok = sum(1 for p in pages if p.ok)
        logger.info("Fetched %d/%d page image(s) job=%s", ok, len(pages), self._job_id)
        return list(pages)

    async def _fetch_one(self, req: CapturedPageRequest) -> DownloadedPage:
        """Fetch + persist one page. Per-page failures are absorbed here."""
        try:
            content, content_type = await self._download(req)
            path = self._storage_dir / f"page_{req.ordinal}.{extension_for(content_type)}"
            await asyncio.to_thread(path.write_bytes, content)
        except PageFetchError as exc:
            logger.warning("Page %d fetch failed job=%s: %s", req.ordinal, self._job_id, exc)
            return DownloadedPage(request=req, error=str(exc))
        except OSError as exc:
            logger.warning("Page %d could not be stored job=%s: %s", req.ordinal, self._job_id, exc)
            return DownloadedPage(request=req, error=f"storage error: {exc}")
        logger.debug("Stored page %d (%d bytes) at %s", req.ordinal, len(content), path)
        return DownloadedPage(request=req, path=path, content_type=content_type)

    async def _download(self, req: CapturedPageRequest) -> tuple[bytes, str]:
        """GET with retries on transport errors and 5xx.

        Raises:
            PageFetchError: after the last attempt failed.
        """
        delays = self._config.fetch_retry_delays
        last_exc: Exception | None = None
        for attempt in range(len(delays) + 1):
            try:
                response = await self._client.get(req.url, timeout=self._config.fetch_timeout_s)
                response.raise_for_status()
                return response.content, response.headers.get("content-type", "")
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                last_exc = exc
                if attempt >= len(delays) or not _is_retryable(exc):
                    break
                logger.debug("Retrying page %d after %s (attempt %d)", req.ordinal, exc, attempt + 1)
                await asyncio.sleep(delays[attempt])

        status = last_exc.response.status_code if isinstance(last_exc, httpx.HTTPStatusError) else None
        detail = f"HTTP {status}" if status is not None else f"{type(last_exc).__name__}: {last_exc}"
        raise PageFetchError(detail, sequence=req.sequence, http_status=status) from last_exc
