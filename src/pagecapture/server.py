# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page Capture HTTP server.

Routes:
- POST /api/convert      — submit ``{"driveUrl": ...}``, returns ``{"jobId": ...}``
- GET  /api/job/{id}     — job status
- GET  /download/{id}    — finished PDF; the job is discarded after the response
- GET  /api/logs         — recent JSON log entries (HTTP Basic auth)
- GET  /health, /ready   — liveness and pool readiness
- GET  /*                — static front-end when ``--static-dir`` is given

All logging goes to stderr (JSON) and, with ``--log-dir``, to a rotating file.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import FileResponse, JSONResponse
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from .auth_middleware import BasicAuthMiddleware
from .browser_pool import SessionPool
from .browser_session import BrowserConfig
from .config import CaptureConfig
from .errors import CaptureError
from .jobs import JobCoordinator
from .logging_config import read_recent_logs
from .pipeline import CapturePipeline, default_client_factory
from .problem_details import from_exception, from_validation

# Logging configured in main() via logging_config.configure()
logger = logging.getLogger("pagecapture.server")

DOWNLOAD_FILENAME = "converted.pdf"
_DEFAULT_LOG_LIMIT = 200
_MAX_LOG_LIMIT = 1000
_TRUE_VALUES = ("1", "true", "yes")


class ConvertRequest(BaseModel):
    """Body of ``POST /api/convert``."""

    model_config = ConfigDict(populate_by_name=True)

    drive_url: str = Field(alias="driveUrl", min_length=1)


# ── Handlers ─────────────────────────────────────────────────────────


async def _convert(request: Request) -> JSONResponse:
    try:
        payload = await request.json()
    except ValueError:
        return from_validation("Request body must be JSON", instance=request.url.path).to_response()
    try:
        body = ConvertRequest.model_validate(payload)
    except ValidationError:
        return from_validation(
            "driveUrl is required",
            field_name="driveUrl",
            instance=request.url.path,
        ).to_response()

    coordinator: JobCoordinator = request.app.state.coordinator
    job_id = coordinator.submit(body.drive_url)
    return JSONResponse({"jobId": job_id})


async def _job_status(request: Request) -> JSONResponse:
    coordinator: JobCoordinator = request.app.state.coordinator
    job = coordinator.get_status(request.path_params["job_id"])
    return JSONResponse(job.to_dict())


async def _download(request: Request) -> FileResponse:
    coordinator: JobCoordinator = request.app.state.coordinator
    job_id = request.path_params["job_id"]
    path = coordinator.get_artifact(job_id)
    logger.info("Serving PDF for job %s", job_id)
    return FileResponse(
        path,
        media_type="application/pdf",
        filename=DOWNLOAD_FILENAME,
        background=BackgroundTask(coordinator.discard, job_id),
    )


async def _logs(request: Request) -> JSONResponse:
    log_dir = request.app.state.log_dir
    if log_dir is None:
        return JSONResponse({"entries": [], "enabled": False})
    limit = _DEFAULT_LOG_LIMIT
    raw = request.query_params.get("limit", "")
    if raw:
        with suppress(ValueError):
            limit = max(1, min(int(raw), _MAX_LOG_LIMIT))
    entries = await asyncio.to_thread(read_recent_logs, log_dir, limit)
    return JSONResponse({"entries": entries, "enabled": True})


async def _health_check(request: Request) -> JSONResponse:
    coordinator: JobCoordinator = request.app.state.coordinator
    return JSONResponse({"status": "ok", "jobs": len(coordinator.jobs()), "running": coordinator.running})


async def _readiness_check(request: Request) -> JSONResponse:
    pool: SessionPool | None = request.app.state.pool
    if pool is None:
        return JSONResponse({"status": "ready"})
    h = pool.health()
    ready = h.browser_connected
    return JSONResponse(
        {
            "status": "ready" if ready else "not_ready",
            "pool": {
                "active": h.active,
                "max_sessions": h.max_sessions,
                "waiting": h.waiting,
                "browser_connected": h.browser_connected,
            },
        },
        status_code=200 if ready else 503,
    )


async def _capture_error_handler(request: Request, exc: Exception):
    return from_exception(exc, instance=request.url.path).to_response()


# ── App factory ──────────────────────────────────────────────────────


def create_app(
    coordinator: JobCoordinator,
    *,
    pool: SessionPool | None = None,
    log_dir: str | Path | None = None,
    static_dir: str | Path | None = None,
    log_user: str = "admin",
    log_password: str = "",
    manage_lifecycle: bool = True,
) -> Starlette:
    """Build the Starlette app around an existing coordinator.

    With *manage_lifecycle* the app's lifespan starts the pool and the
    coordinator and shuts both down again.
    """

    @asynccontextmanager
    async def lifespan(app: Starlette):
        if not manage_lifecycle:
            yield
            return
        if pool is not None:
            await pool.start()
        await coordinator.start()
        logger.info("HTTP server ready")
        try:
            yield
        finally:
            await coordinator.shutdown()
            if pool is not None:
                await pool.shutdown()
            logger.info("HTTP server: shutdown complete")

    routes = [
        Route("/api/convert", _convert, methods=["POST"]),
        Route("/api/job/{job_id}", _job_status, methods=["GET"]),
        Route("/download/{job_id}", _download, methods=["GET"]),
        Route("/api/logs", _logs, methods=["GET"]),
        Route("/health", _health_check, methods=["GET"]),
        Route("/ready", _readiness_check, methods=["GET"]),
    ]
    if static_dir is not None:
        routes.append(Mount("/", app=StaticFiles(directory=str(static_dir), html=True), name="static"))

    app = Starlette(
        routes=routes,
        middleware=[Middleware(BasicAuthMiddleware, username=log_user, password=log_password)],
        exception_handlers={CaptureError: _capture_error_handler},
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator
    app.state.pool = pool
    app.state.log_dir = Path(log_dir) if log_dir is not None else None
    return app


# ── Entry point ──────────────────────────────────────────────────────


def _parse_server_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI args and ``PAGECAPTURE_*`` env vars for server configuration."""
    parser = argparse.ArgumentParser(description="Page Capture HTTP server")
    parser.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=3000, help="Bind port (default: 3000)")
    parser.add_argument("--jobs-dir", default="jobs", help="Per-job working directory root (default: ./jobs)")
    parser.add_argument("--log-dir", default="logs", help="Directory for rotating JSON logs (default: ./logs)")
    parser.add_argument("--static-dir", default="", help="Serve a static front-end from this directory")
    parser.add_argument(
        "--max-sessions",
        type=int,
        default=3,
        help="Concurrent browser sessions (default: 3)",
    )
    parser.add_argument(
        "--retention",
        type=float,
        default=3600.0,
        help="Seconds an uncollected job is kept (default: 3600)",
    )
    parser.add_argument("--headful", action="store_true", default=False, help="Show the browser window")
    parser.add_argument(
        "--no-sandbox",
        action="store_true",
        default=False,
        help="Launch Chromium without its sandbox (containers running as root)",
    )
    args, _ = parser.parse_known_args(argv)

    # Env var overrides
    env_host = os.environ.get("PAGECAPTURE_HOST", "").strip()
    if env_host:
        args.host = env_host

    env_port = os.environ.get("PAGECAPTURE_PORT", "").strip()
    if env_port:
        with suppress(ValueError):
            args.port = int(env_port)

    for attr, var in (("jobs_dir", "JOBS_DIR"), ("log_dir", "LOG_DIR"), ("static_dir", "STATIC_DIR")):
        value = os.environ.get(f"PAGECAPTURE_{var}", "").strip()
        if value:
            setattr(args, attr, value)

    env_sessions = os.environ.get("PAGECAPTURE_MAX_SESSIONS", "").strip()
    if env_sessions:
        with suppress(ValueError):
            args.max_sessions = int(env_sessions)

    env_retention = os.environ.get("PAGECAPTURE_JOB_RETENTION_SECONDS", "").strip()
    if env_retention:
        with suppress(ValueError):
            args.retention = float(env_retention)

    env_sandbox = os.environ.get("PAGECAPTURE_NO_SANDBOX", "").strip().lower()
    args.no_sandbox = args.no_sandbox or env_sandbox in _TRUE_VALUES

    args.log_user = os.environ.get("PAGECAPTURE_LOG_USER", "admin").strip() or "admin"
    args.log_password = os.environ.get("PAGECAPTURE_LOG_PASSWORD", "")
    return args


def build_app(args: argparse.Namespace) -> Starlette:
    """Wire pool, pipeline and coordinator from parsed server args."""
    browser_config = BrowserConfig(headless=not args.headful, no_sandbox=args.no_sandbox)
    pool = SessionPool(max_sessions=args.max_sessions, config=browser_config)
    pipeline = CapturePipeline(
        CaptureConfig.from_env(),
        client_factory=default_client_factory(browser_config.user_agent),
    )
    coordinator = JobCoordinator(pool, pipeline, args.jobs_dir, retention_seconds=args.retention)
    return create_app(
        coordinator,
        pool=pool,
        log_dir=args.log_dir or None,
        static_dir=args.static_dir or None,
        log_user=args.log_user,
        log_password=args.log_password,
    )


async def _run_http_server(app: Starlette, host: str, port: int) -> None:
    import uvicorn

    config = uvicorn.Config(app, host=host, port=port, log_level="info", log_config=None)
    server = uvicorn.Server(config)
    await server.serve()


def main(argv: list[str] | None = None) -> None:
    """Entry point for ``pagecapture-server``."""
    args = _parse_server_args(argv if argv is not None else sys.argv[1:])

    # Configure structlog BEFORE any log output
    from .logging_config import configure as configure_logging

    configure_logging(json_output=True, level="INFO", log_dir=args.log_dir or None)

    if not args.log_password:
        logger.warning("PAGECAPTURE_LOG_PASSWORD is not set; /api/logs will reject every request")
    logger.info("LEGAL: Users are responsible for complying with the terms of service of captured documents.")
    logger.info("Listening on http://%s:%d", args.host, args.port)

    app = build_app(args)
    asyncio.run(_run_http_server(app, args.host, args.port))


if __name__ == "__main__":
    main()
