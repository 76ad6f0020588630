# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""JobCoordinator — in-memory job registry and background execution.

Each submitted URL becomes a ``CaptureJob`` that runs as an asyncio task:
wait for a pool slot (the job stays ``queued`` while the pool is full),
create job storage and enter ``processing``, launch the session, run the
pipeline, record a terminal state. The registry is only touched from the
event loop.

Job lifecycle::

    queued → processing → completed | failed

Completed jobs hand their artifact out once: the consumer calls
``discard()`` after delivery, which removes storage and the registry entry.
Terminal jobs that are never collected are reaped after
``retention_seconds``.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import structlog

from .browser_pool import SessionPool
from .errors import InvalidTargetError, JobNotFoundError, JobNotReadyError, LaunchError
from .pipeline import CaptureOutcome, CapturePipeline
from .pipeline_timer import PipelineTimer
from .problem_details import sanitize_detail

logger = logging.getLogger(__name__)

_REAPER_INTERVAL = 60.0  # seconds
_DEFAULT_RETENTION = 3600.0
_ALLOWED_SCHEMES = frozenset({"http", "https"})

__all__ = [
    "CaptureJob",
    "CaptureOutcome",
    "JobCoordinator",
    "JobStatus",
    "validate_target",
]


class JobStatus(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass(slots=True)
class CaptureJob:
    """One conversion request and everything known about its progress."""

    id: str
    url: str
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    result: str | None = None  # download locator once completed
    error: str | None = None
    outcome: CaptureOutcome | None = None
    page_count: int = 0
    missing_pages: tuple[int, ...] = ()
    warnings: tuple[str, ...] = ()
    started_at: datetime | None = None
    finished_at: datetime | None = None
    timings: dict[str, float] = field(default_factory=dict)
    artifact_path: Path | None = None
    finished_monotonic: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Public JSON shape (camelCase keys)."""
        return {
            "id": self.id,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "result": self.result,
            "error": self.error,
            "outcome": self.outcome.value if self.outcome else None,
            "pageCount": self.page_count,
            "missingPages": list(self.missing_pages),
            "warnings": list(self.warnings),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "timings": dict(self.timings),
        }


def validate_target(url: str) -> str:
    """Return the stripped *url* if it is an absolute http(s) URL with a host.

    Raises:
        InvalidTargetError: anything else.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidTargetError("Document URL is required")
    url = url.strip()
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise InvalidTargetError(f"Malformed URL: {exc}") from exc
    if parts.scheme.lower() not in _ALLOWED_SCHEMES:
        raise InvalidTargetError(f"Unsupported URL scheme: {parts.scheme or '(none)'}")
    if not parts.hostname:
        raise InvalidTargetError("URL has no host")
    return url


class JobCoordinator:
    """Own the job registry and run each job's pipeline in the background."""

    def __init__(
        self,
        pool: SessionPool,
        pipeline: CapturePipeline,
        jobs_dir: str | Path,
        *,
        retention_seconds: float = _DEFAULT_RETENTION,
    ) -> None:
        if retention_seconds <= 0:
            raise ValueError(f"retention_seconds must be > 0, got {retention_seconds}")
        self._pool = pool
        self._pipeline = pipeline
        self._jobs_dir = Path(jobs_dir)
        self._retention = retention_seconds
        self._jobs: dict[str, CaptureJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._reaper_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    # ── Public API ───────────────────────────────────────────────────

    def submit(self, url: str) -> str:
        """Register a queued job for *url*, schedule it and return its id.

        Raises:
            InvalidTargetError: *url* is not an absolute http(s) URL.
        """
        target = validate_target(url)
        job_id = str(uuid.uuid4())
        job = CaptureJob(id=job_id, url=target)
        self._jobs[job_id] = job
        task = asyncio.get_running_loop().create_task(self._run_job(job), name=f"pagecapture-job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._tasks.pop(jid, None))
        logger.info("Job %s queued for %s", job_id, sanitize_detail(target))
        return job_id

    def get_status(self, job_id: str) -> CaptureJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_artifact(self, job_id: str) -> Path:
        """Path of the finished PDF.

        Raises:
            JobNotFoundError: unknown id.
            JobNotReadyError: the job has not completed (or failed).
        """
        job = self.get_status(job_id)
        if job.status is not JobStatus.COMPLETED or job.artifact_path is None:
            raise JobNotReadyError(job_id, job.status.value)
        return job.artifact_path

    async def discard(self, job_id: str) -> None:
        """Delete the job's storage and forget it. Unknown ids are ignored."""
        job = self._jobs.pop(job_id, None)
        if job is None:
            return
        await asyncio.to_thread(shutil.rmtree, self._storage_dir(job_id), True)
        logger.info("Job %s discarded", job_id)

    async def wait(self, job_id: str) -> CaptureJob:
        """Wait for the job's task to finish and return the job."""
        job = self.get_status(job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return job

    def jobs(self) -> list[CaptureJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> int:
        return len(self._tasks)

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        self._jobs_dir.mkdir(parents=True, exist_ok=True)
        self._shutdown_event.clear()
        self._start_reaper()
        logger.info("JobCoordinator started (jobs_dir=%s)", self._jobs_dir)

    async def shutdown(self) -> None:
        """Stop the reaper and cancel outstanding jobs."""
        self._shutdown_event.set()
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._reaper_task
        self._reaper_task = None

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("JobCoordinator shut down")

    # ── Job execution ────────────────────────────────────────────────

    def _storage_dir(self, job_id: str) -> Path:
        return self._jobs_dir / job_id

    async def _run_job(self, job: CaptureJob) -> None:
        structlog.contextvars.bind_contextvars(job_id=job.id)
        timer = PipelineTimer()
        timer.stage("queued")
        try:
            async with self._pool.session(job.id, on_admitted=lambda: self._enter_processing(job, timer)) as session:
                storage = self._storage_dir(job.id)
                result = await self._pipeline.run(session, job.url, storage, job_id=job.id, timer=timer)
        except asyncio.CancelledError:
            self._mark_failed(job, timer, "Job cancelled by server shutdown")
            raise
        except LaunchError as exc:
            self._mark_failed(job, timer, str(exc), failed_stage="launch")
        except Exception as exc:
            logger.exception("Job %s failed", job.id)
            self._mark_failed(job, timer, str(exc) or type(exc).__name__)
        else:
            job.status = JobStatus.COMPLETED
            job.outcome = result.outcome
            job.result = f"/download/{job.id}"
            job.artifact_path = result.artifact_path
            job.page_count = result.page_count
            job.missing_pages = result.missing_pages
            job.warnings = result.warnings
            job.timings = result.timings
            job.finished_at = datetime.now(UTC)
            job.finished_monotonic = time.monotonic()
            logger.info("Job %s completed: %s, %d page(s)", job.id, job.outcome, job.page_count)
        finally:
            structlog.contextvars.unbind_contextvars("job_id")

    async def _enter_processing(self, job: CaptureJob, timer: PipelineTimer) -> None:
        """Called by the pool once a session slot is held, before the browser context exists."""
        await asyncio.to_thread(self._storage_dir(job.id).mkdir, parents=True, exist_ok=True)
        job.status = JobStatus.PROCESSING
        job.started_at = datetime.now(UTC)
        timer.stage("launch")
        logger.info("Job %s processing", job.id)

    def _mark_failed(
        self, job: CaptureJob, timer: PipelineTimer, message: str, failed_stage: str | None = None
    ) -> None:
        stage = failed_stage or timer.current_stage
        timer.finalize()
        report = timer.failure_report(stage)
        job.status = JobStatus.FAILED
        job.outcome = CaptureOutcome.FAILED
        job.error = sanitize_detail(message)
        job.timings = timer.elapsed_per_stage()
        job.warnings = (*job.warnings, report["hint"])
        job.finished_at = datetime.now(UTC)
        job.finished_monotonic = time.monotonic()
        logger.warning("Job %s failed at %s: %s", job.id, report["failed_at"], job.error)

    # ── Reaper ───────────────────────────────────────────────────────

    def _start_reaper(self) -> None:
        """Start the retention reaper task."""
        self._reaper_task = asyncio.get_running_loop().create_task(self._reaper_loop(), name="pagecapture-job-reaper")
        self._reaper_task.add_done_callback(self._handle_reaper_crash)

    def _handle_reaper_crash(self, task: asyncio.Task) -> None:
        """Restart reaper if it crashed unexpectedly (not cancelled)."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not self._shutdown_event.is_set():
            logger.error("Job reaper crashed, restarting: %s", exc, exc_info=exc)
            self._start_reaper()

    async def _reaper_loop(self) -> None:
        """Periodically discard terminal jobs nobody collected."""
        while not self._shutdown_event.is_set():
            try:
                async with asyncio.timeout(min(_REAPER_INTERVAL, self._retention)):
                    await self._shutdown_event.wait()
                    return
            except TimeoutError:
                pass
            await self.reap_expired()

    async def reap_expired(self, now: float | None = None) -> list[str]:
        """Discard terminal jobs older than the retention window. Returns their ids."""
        now = time.monotonic() if now is None else now
        expired = [
            jid
            for jid, job in self._jobs.items()
            if job.status.terminal
            and job.finished_monotonic is not None
            and now - job.finished_monotonic > self._retention
        ]
        for jid in expired:
            await self.discard(jid)
            logger.info("Reaper discarded uncollected job: %s", jid)
        return expired
