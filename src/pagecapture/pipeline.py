# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""CapturePipeline — one job's run from navigation to the written PDF.

Stages: navigation → probe → scroll → settle → fetch → assemble.
Per-page fetch/decode failures are absorbed and reported as missing pages;
anything else propagates to the caller, which owns the session lifetime.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from .assembler import AssembledDocument, DocumentAssembler
from .config import CaptureConfig
from .errors import CaptureError
from .fetcher import ImageFetcher
from .interceptor import RequestInterceptor
from .page_count import PageCountProbe
from .pipeline_timer import PipelineTimer
from .scroll_driver import ScrollDriver, ScrollReport

if TYPE_CHECKING:
    from .browser_session import BrowserSession

logger = logging.getLogger(__name__)

ARTIFACT_NAME = "output.pdf"


class CaptureOutcome(StrEnum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CaptureResult:
    """Everything a caller needs to report a finished capture."""

    artifact_path: Path
    captured: int  # page requests discovered
    page_count: int  # pages in the PDF
    missing_pages: tuple[int, ...]  # 1-based positions that failed to fetch or decode
    estimated_pages: int
    scroll: ScrollReport
    navigation_strategy: str = "load"
    timings: dict[str, float] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    @property
    def outcome(self) -> CaptureOutcome:
        return CaptureOutcome.PARTIAL_SUCCESS if self.missing_pages else CaptureOutcome.SUCCESS


def default_client_factory(user_agent: str) -> Callable[[], httpx.AsyncClient]:
    def _factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(follow_redirects=True, headers={"User-Agent": user_agent})

    return _factory


class CapturePipeline:
    """Run the capture stages against an already-open session."""

    def __init__(
        self,
        config: CaptureConfig | None = None,
        *,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self.config = config or CaptureConfig()
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(follow_redirects=True))

    async def run(
        self,
        session: BrowserSession,
        url: str,
        storage_dir: Path,
        *,
        job_id: str = "",
        timer: PipelineTimer | None = None,
    ) -> CaptureResult:
        """Capture *url* into ``storage_dir/output.pdf``.

        *storage_dir* must already exist. Raises LaunchError / NavigationError /
        AssemblyError (fatal), CaptureError when nothing was captured and
        ``fail_on_empty`` is set; per-page failures end up in ``missing_pages``.
        """
        cfg = self.config
        timer = timer or PipelineTimer()
        warnings: list[str] = []

        interceptor = RequestInterceptor(cfg, job_id=job_id)
        session.on_request(interceptor)

        timer.stage("navigation")
        navigation = await session.navigate(url)
        logger.info(
            "Viewer loaded job=%s (strategy=%s, status=%s)", job_id, navigation.strategy, navigation.http_status
        )

        timer.stage("probe")
        estimate = await PageCountProbe(cfg).estimate(session)

        timer.stage("scroll")
        driver = ScrollDriver(cfg)
        iterations = driver.iterations_for(estimate)
        report = await driver.advance(
            session,
            iterations,
            cfg.scroll_delay_ms,
            progress=lambda: interceptor.count,
        )

        timer.stage("settle")
        await asyncio.sleep(cfg.settle_ms / 1000)
        interceptor.close()
        captured = interceptor.snapshot()

        if not report.likely_complete and captured:
            warnings.append(
                f"Page requests were still arriving when scrolling ended ({report.idle_ticks} idle tick(s)); "
                "the document may be truncated."
            )
        if estimate and len(captured) < estimate:
            warnings.append(f"Viewer reported {estimate} page(s) but only {len(captured)} were captured.")
        if not captured:
            if cfg.fail_on_empty:
                raise CaptureError("No page images were observed while scrolling the document.")
            warnings.append("No page images were observed.")
        for message in warnings:
            logger.warning("%s job=%s", message, job_id)

        timer.stage("fetch")
        async with self._client_factory() as client:
            fetcher = ImageFetcher(client, storage_dir, config=cfg, job_id=job_id)
            downloaded = await fetcher.fetch_all(captured)

        timer.stage("assemble")
        document: AssembledDocument = await asyncio.to_thread(DocumentAssembler(job_id=job_id).assemble, downloaded)
        artifact_path = storage_dir / ARTIFACT_NAME
        await asyncio.to_thread(artifact_path.write_bytes, document.data)
        timer.finalize()

        included = set(document.included)
        missing = tuple(req.ordinal for req in captured if req.sequence not in included)
        result = CaptureResult(
            artifact_path=artifact_path,
            captured=len(captured),
            page_count=document.page_count,
            missing_pages=missing,
            estimated_pages=estimate,
            scroll=report,
            navigation_strategy=navigation.strategy,
            timings=timer.elapsed_per_stage(),
            warnings=tuple(warnings),
        )
        logger.info(
            "Capture finished job=%s: %d/%d page(s), outcome=%s",
            job_id,
            result.page_count,
            result.captured,
            result.outcome,
        )
        return result
