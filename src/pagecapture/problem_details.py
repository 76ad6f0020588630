# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""RFC 9457 Problem Details for the capture HTTP API and CLI.

Maps internal exceptions to standardised problem detail objects. The module
is a near-leaf dependency (stdlib + errors.py + starlette lazy) so it can be
imported safely from any layer.

Key public API:

- ``ProblemType``   — StrEnum error taxonomy.
- ``ProblemDetail`` — frozen dataclass (→ JSON / Starlette response / CLI text).
- ``sanitize_detail()`` — scrub secrets & paths from error messages.
- ``from_exception`` and friends — build ``ProblemDetail`` instances.

Type URI namespace: ``https://www.retio.ai/pagecapture/errors/{slug}``
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

# ── Constants ────────────────────────────────────────────────────────

_ERROR_BASE = "https://www.retio.ai/pagecapture/errors"

MAX_DETAIL_LENGTH = 200

# ── ProblemType taxonomy ─────────────────────────────────────────────


class ProblemType(StrEnum):
    """Error taxonomy for Page Capture."""

    # Auth (log viewer)
    AUTH_REQUIRED = "auth-required"

    # Request / job lookup
    VALIDATION_ERROR = "validation-error"
    INVALID_TARGET = "invalid-target"
    JOB_NOT_FOUND = "job-not-found"
    JOB_NOT_READY = "job-not-ready"

    # Capture
    BROWSER_UNAVAILABLE = "browser-unavailable"
    NAVIGATION_FAILED = "navigation-failed"
    PAGE_TIMEOUT = "page-timeout"
    DNS_RESOLUTION_FAILED = "dns-resolution-failed"
    CAPTURE_FAILED = "capture-failed"
    ASSEMBLY_FAILED = "assembly-failed"

    @property
    def uri(self) -> str:
        """Full type URI for RFC 9457 ``type`` field."""
        return f"{_ERROR_BASE}/{self.value}"


# ── Per-type metadata: (status, title, hint) ─────────────────────────

_TYPE_METADATA: dict[ProblemType, tuple[int, str, str]] = {
    ProblemType.AUTH_REQUIRED: (401, "Authentication Required", ""),
    ProblemType.VALIDATION_ERROR: (422, "Validation Error", ""),
    ProblemType.INVALID_TARGET: (
        422,
        "Invalid Document URL",
        "Provide a valid http:// or https:// document URL.",
    ),
    ProblemType.JOB_NOT_FOUND: (404, "Job Not Found", "The job id is unknown or its PDF was already downloaded."),
    ProblemType.JOB_NOT_READY: (409, "Job Not Ready", "Poll the job status until it is completed."),
    ProblemType.BROWSER_UNAVAILABLE: (
        503,
        "Browser Unavailable",
        "Ensure Chromium is installed: playwright install chromium",
    ),
    ProblemType.NAVIGATION_FAILED: (
        502,
        "Navigation Failed",
        "Check that the document is shared publicly and the URL is correct.",
    ),
    ProblemType.PAGE_TIMEOUT: (504, "Page Timed Out", "The viewer took too long to load. Try again later."),
    ProblemType.DNS_RESOLUTION_FAILED: (
        502,
        "DNS Resolution Failed",
        "Check the URL spelling and ensure the domain exists.",
    ),
    ProblemType.CAPTURE_FAILED: (500, "Capture Failed", "Open the URL in a browser to confirm the viewer loads."),
    ProblemType.ASSEMBLY_FAILED: (500, "PDF Assembly Failed", "Check free disk space in the jobs directory."),
}

# ── Secret sanitization patterns ─────────────────────────────────────

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"Bearer\s+\S+"), "Bearer <redacted>"),
    (re.compile(r"Basic\s+[A-Za-z0-9+/=]{8,}"), "Basic <redacted>"),
    (
        re.compile(
            r"(?:API_KEY|SECRET|TOKEN|PASSWORD|CREDENTIAL)\s*[=:]\s*\S+",
            re.IGNORECASE,
        ),
        "<redacted>",
    ),
    (re.compile(r"://[^@\s/]+@"), "://<redacted>@"),
    (re.compile(r"([?&](?:key|token|access_token|sig|signature)=)[^&\s]+", re.IGNORECASE), r"\1<redacted>"),
]

_PATH_PATTERN = re.compile(
    r"(/(?:Users|home|tmp|var|etc|opt|root|srv|proc|sys|usr|Library"
    r"|Applications|private|snap|mnt|media|nix)/[\w./-]+"
    r"|[A-Z]:\\[\w.\\-]+)"
)

# ── Chromium net::ERR_* classification ───────────────────────────────

_NET_ERR_RE = re.compile(r"net::ERR_(\w+)")

_DNS_CODES = {"NAME_NOT_RESOLVED"}
_TIMEOUT_CODES = {"CONNECTION_TIMED_OUT", "TIMED_OUT"}

_HOSTNAME_RE = re.compile(r"https?://([^/:\s]+)")


def classify_network_error(exc_message: str) -> tuple[ProblemType, str] | None:
    """Classify a Chromium network error message into a ProblemType + human message.

    Returns ``None`` if *exc_message* does not contain a ``net::ERR_*`` code.
    """
    m = _NET_ERR_RE.search(exc_message)
    if m is None:
        return None
    code = m.group(1)

    hm = _HOSTNAME_RE.search(exc_message)
    hostname = hm.group(1) if hm else ""

    if code in _DNS_CODES:
        host_part = f" '{hostname}'" if hostname else ""
        return ProblemType.DNS_RESOLUTION_FAILED, f"Could not resolve domain name{host_part}"

    if code in _TIMEOUT_CODES:
        host_part = f" to '{hostname}'" if hostname else ""
        return ProblemType.PAGE_TIMEOUT, f"Connection timed out{host_part}"

    return ProblemType.NAVIGATION_FAILED, f"Navigation failed (net::ERR_{code})"


def sanitize_detail(text: str) -> str:
    """Scrub secrets and filesystem paths from *text*.

    Applies ``_SECRET_PATTERNS`` and ``_PATH_PATTERN``, then truncates
    to ``MAX_DETAIL_LENGTH`` characters.
    """
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    text = _PATH_PATTERN.sub("<path>", text)
    if len(text) > MAX_DETAIL_LENGTH:
        text = text[:MAX_DETAIL_LENGTH] + "..."
    return text


# ── ProblemDetail dataclass ──────────────────────────────────────────

# Standard RFC 9457 fields that extensions must never shadow.
_STANDARD_FIELDS = frozenset({"type", "title", "status", "detail", "instance"})


@dataclass(frozen=True, slots=True)
class ProblemDetail:
    """RFC 9457 Problem Detail object."""

    type: str = "about:blank"
    title: str = ""
    status: int = 500
    detail: str = ""
    instance: str = ""
    hint: str = ""
    extensions: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """RFC 9457 JSON dict.  Empty optional fields omitted, extensions merged at top level."""
        d: dict[str, Any] = {"type": self.type, "status": self.status}
        if self.title:
            d["title"] = self.title
        if self.detail:
            d["detail"] = self.detail
        if self.instance:
            d["instance"] = self.instance
        for k, v in self.extensions.items():
            if k not in _STANDARD_FIELDS:
                d[k] = v
        return d

    def to_response(self, headers: dict[str, str] | None = None):
        """Starlette ``JSONResponse`` with ``application/problem+json``."""
        from starlette.responses import JSONResponse

        merged: dict[str, str] = {
            "Cache-Control": "no-store",
            "Content-Language": "en",
        }
        if headers:
            merged.update(headers)
        return JSONResponse(
            content=self.to_dict(),
            status_code=self.status,
            media_type="application/problem+json",
            headers=merged,
        )

    def to_cli_text(self) -> str:
        """Human-friendly CLI error message.

        Format::

            Error: <detail>
            Hint: <hint>
        """
        lines = [f"Error: {self.detail or self.title}"]
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        return "\n".join(lines)


# ── Factory functions ────────────────────────────────────────────────


def from_type(
    problem_type: ProblemType,
    detail: str,
    *,
    instance: str = "",
    extensions: dict[str, Any] | None = None,
) -> ProblemDetail:
    """Build a ProblemDetail for *problem_type* with the taxonomy's status and title."""
    status, title, hint = _TYPE_METADATA[problem_type]
    return ProblemDetail(
        type=problem_type.uri,
        title=title,
        status=status,
        detail=sanitize_detail(detail),
        instance=instance,
        hint=hint,
        extensions=dict(extensions) if extensions else {},
    )


def _exception_type_map() -> dict[type, ProblemType]:
    from .errors import (
        AssemblyError,
        InvalidTargetError,
        JobNotFoundError,
        JobNotReadyError,
        LaunchError,
        NavigationError,
    )

    return {
        InvalidTargetError: ProblemType.INVALID_TARGET,
        JobNotFoundError: ProblemType.JOB_NOT_FOUND,
        JobNotReadyError: ProblemType.JOB_NOT_READY,
        LaunchError: ProblemType.BROWSER_UNAVAILABLE,
        NavigationError: ProblemType.NAVIGATION_FAILED,
        AssemblyError: ProblemType.ASSEMBLY_FAILED,
    }


def from_exception(exc: BaseException, *, instance: str = "") -> ProblemDetail:
    """Build a ProblemDetail from an exception.

    Known capture errors map to specific problem types; Chromium
    ``net::ERR_*`` messages are classified; anything else is a generic 500
    with a sanitized message.
    """
    from .errors import CaptureError, JobNotReadyError, NavigationError

    ext: dict[str, Any] = {}
    if isinstance(exc, JobNotReadyError):
        ext["jobStatus"] = exc.status

    net_result = classify_network_error(str(exc))
    if isinstance(exc, NavigationError) and net_result is not None:
        problem_type, human_msg = net_result
        return from_type(problem_type, human_msg, instance=instance, extensions=ext)

    if isinstance(exc, TimeoutError):
        return from_type(ProblemType.PAGE_TIMEOUT, str(exc) or "Timed out", instance=instance)

    for exc_type, problem_type in _exception_type_map().items():
        if isinstance(exc, exc_type):
            return from_type(problem_type, str(exc), instance=instance, extensions=ext)

    if net_result is not None:
        problem_type, human_msg = net_result
        return from_type(problem_type, human_msg, instance=instance)

    if isinstance(exc, CaptureError):
        return from_type(ProblemType.CAPTURE_FAILED, str(exc), instance=instance)

    return ProblemDetail(
        type="about:blank",
        title="Internal Error",
        status=500,
        detail=sanitize_detail(str(exc) or type(exc).__name__),
        instance=instance,
    )


def from_validation(detail: str, *, field_name: str = "", instance: str = "") -> ProblemDetail:
    """Build a 422 ProblemDetail for request validation errors."""
    ext = {"field": field_name} if field_name else None
    return from_type(ProblemType.VALIDATION_ERROR, detail, instance=instance, extensions=ext)


def from_auth_missing(*, instance: str = "") -> ProblemDetail:
    """Build a 401 ProblemDetail for missing or wrong credentials."""
    return from_type(ProblemType.AUTH_REQUIRED, "Valid credentials required.", instance=instance)
