# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Capture exception hierarchy.

All capture-specific errors inherit from CaptureError. Fatal errors
(launch, navigation, assembly) fail the job; per-unit errors (fetch,
decode) are caught at the page boundary and never abort a job.
"""

from __future__ import annotations


class CaptureError(Exception):
    """Base exception for all Page Capture errors."""


class LaunchError(CaptureError):
    """Browser runtime unavailable or failed to start."""


class NavigationError(CaptureError):
    """Target URL unreachable, returned an error status, or timed out."""

    def __init__(self, message: str, *, url: str = "", http_status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.http_status = http_status


class PageFetchError(CaptureError):
    """A single page image could not be downloaded (non-fatal)."""

    def __init__(self, message: str, *, sequence: int, http_status: int | None = None) -> None:
        super().__init__(message)
        self.sequence = sequence
        self.http_status = http_status


class DecodeError(CaptureError):
    """A downloaded page image could not be decoded (non-fatal)."""

    def __init__(self, message: str, *, sequence: int) -> None:
        super().__init__(message)
        self.sequence = sequence


class AssemblyError(CaptureError):
    """Output document could not be produced (fatal)."""


class InvalidTargetError(CaptureError):
    """Submitted URL is not an acceptable capture target."""


class JobNotFoundError(CaptureError):
    """No job is registered under the given id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobNotReadyError(CaptureError):
    """The job exists but has no artifact to hand out (yet)."""

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(f"Job {job_id} is not ready (status={status})")
        self.job_id = job_id
        self.status = status
