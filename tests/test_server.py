# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTTP API tests via httpx.ASGITransport (no real browser, no network)."""

from __future__ import annotations

import base64
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

import pagecapture.server as srv
from pagecapture.browser_pool import PoolHealth
from pagecapture.config import CaptureConfig
from pagecapture.errors import NavigationError
from pagecapture.jobs import JobCoordinator
from pagecapture.pipeline import CapturePipeline
from tests._capture_helpers import FakePool, FakeViewerSession, image_bytes

_FAST = CaptureConfig(scroll_delay_ms=0, settle_ms=0, probe_timeout_ms=0, fetch_retry_delays=())
_PASSWORD = "s3cret"


def _image_client():
    def handler(request):
        return httpx.Response(200, content=image_bytes(), headers={"content-type": "image/png"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _basic(user: str, password: str) -> dict[str, str]:
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
async def coordinator(tmp_path):
    coord = JobCoordinator(FakePool(), CapturePipeline(_FAST, client_factory=_image_client), tmp_path / "jobs")
    await coord.start()
    yield coord
    await coord.shutdown()


@pytest.fixture
def log_dir(tmp_path):
    d = tmp_path / "logs"
    d.mkdir()
    return d


@pytest.fixture
def app(coordinator, log_dir):
    return srv.create_app(coordinator, log_dir=log_dir, log_password=_PASSWORD, manage_lifecycle=False)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


# ---------------------------------------------------------------------------
# Convert / status / download
# ---------------------------------------------------------------------------


class TestConvert:
    async def test_returns_job_id(self, client, coordinator):
        resp = await client.post("/api/convert", json={"driveUrl": "https://drive.google.com/file/d/1/view"})
        assert resp.status_code == 200
        job_id = resp.json()["jobId"]
        assert coordinator.get_status(job_id).url == "https://drive.google.com/file/d/1/view"
        await coordinator.wait(job_id)

    async def test_missing_url_is_422(self, client):
        resp = await client.post("/api/convert", json={})
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["type"].endswith("/validation-error")
        assert body["field"] == "driveUrl"

    async def test_invalid_url_is_422(self, client):
        resp = await client.post("/api/convert", json={"driveUrl": "ftp://example.com/doc"})
        assert resp.status_code == 422
        assert resp.json()["type"].endswith("/invalid-target")

    async def test_non_json_body_is_422(self, client):
        resp = await client.post("/api/convert", content=b"driveUrl=x", headers={"content-type": "text/plain"})
        assert resp.status_code == 422


class TestJobStatus:
    async def test_completed_job(self, client, coordinator):
        job_id = (await client.post("/api/convert", json={"driveUrl": "https://x.test/d"})).json()["jobId"]
        await coordinator.wait(job_id)

        resp = await client.get(f"/api/job/{job_id}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == job_id
        assert body["status"] == "completed"
        assert body["result"] == f"/download/{job_id}"
        assert body["outcome"] == "success"
        assert body["pageCount"] == 2

    async def test_unknown_job_is_404(self, client):
        resp = await client.get("/api/job/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["type"].endswith("/job-not-found")


class TestDownload:
    async def test_serves_pdf_then_discards(self, client, coordinator, tmp_path):
        job_id = (await client.post("/api/convert", json={"driveUrl": "https://x.test/d"})).json()["jobId"]
        await coordinator.wait(job_id)

        resp = await client.get(f"/download/{job_id}")

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert "converted.pdf" in resp.headers["content-disposition"]
        assert resp.content.startswith(b"%PDF-")
        assert not (tmp_path / "jobs" / job_id).exists()
        assert (await client.get(f"/api/job/{job_id}")).status_code == 404
        assert (await client.get(f"/download/{job_id}")).status_code == 404

    async def test_not_ready_is_409(self, tmp_path):
        import asyncio

        gate = asyncio.Event()
        pipeline = CapturePipeline(_FAST, client_factory=_image_client)
        coord = JobCoordinator(FakePool(gate=gate), pipeline, tmp_path / "j")
        await coord.start()
        try:
            app = srv.create_app(coord, manage_lifecycle=False)
            async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://t") as c:
                job_id = (await c.post("/api/convert", json={"driveUrl": "https://x.test/d"})).json()["jobId"]
                resp = await c.get(f"/download/{job_id}")
            assert resp.status_code == 409
            assert resp.json()["jobStatus"] == "queued"
            gate.set()
            await coord.wait(job_id)
        finally:
            await coord.shutdown()

    async def test_failed_job_is_409(self, tmp_path):
        err = NavigationError("Target returned HTTP 404")
        pool = FakePool(lambda: FakeViewerSession([], navigate_error=err))
        coord = JobCoordinator(pool, CapturePipeline(_FAST, client_factory=_image_client), tmp_path / "j")
        await coord.start()
        try:
            app = srv.create_app(coord, manage_lifecycle=False)
            async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://t") as c:
                job_id = (await c.post("/api/convert", json={"driveUrl": "https://x.test/d"})).json()["jobId"]
                await coord.wait(job_id)
                status = (await c.get(f"/api/job/{job_id}")).json()
                resp = await c.get(f"/download/{job_id}")
            assert status["status"] == "failed"
            assert "HTTP 404" in status["error"]
            assert resp.status_code == 409
        finally:
            await coord.shutdown()


# ---------------------------------------------------------------------------
# Logs (Basic auth)
# ---------------------------------------------------------------------------


class TestLogs:
    async def test_requires_credentials(self, client):
        resp = await client.get("/api/logs")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"].startswith("Basic")
        assert resp.headers["content-type"].startswith("application/problem+json")

    async def test_wrong_password_rejected(self, client):
        resp = await client.get("/api/logs", headers=_basic("admin", "nope"))
        assert resp.status_code == 401

    async def test_returns_recent_entries(self, client, log_dir):
        lines = [json.dumps({"event": f"line {i}", "level": "info"}) for i in range(5)]
        (log_dir / "capture.log").write_text("\n".join(lines) + "\n", encoding="utf-8")

        resp = await client.get("/api/logs?limit=2", headers=_basic("admin", _PASSWORD))

        assert resp.status_code == 200
        body = resp.json()
        assert body["enabled"] is True
        assert [e["event"] for e in body["entries"]] == ["line 3", "line 4"]

    async def test_no_password_configured_always_rejects(self, coordinator):
        app = srv.create_app(coordinator, manage_lifecycle=False)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://t") as c:
            resp = await c.get("/api/logs", headers=_basic("admin", ""))
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Health / readiness / static
# ---------------------------------------------------------------------------


class TestHealth:
    async def test_health_ok(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_health_bypasses_auth(self, client):
        assert (await client.get("/health")).status_code == 200

    async def test_ready_without_pool(self, client):
        resp = await client.get("/ready")
        assert resp.json()["status"] == "ready"

    @pytest.mark.parametrize(("connected", "code"), [(True, 200), (False, 503)])
    async def test_ready_reflects_pool(self, coordinator, connected, code):
        pool = MagicMock()
        pool.health.return_value = PoolHealth(active=1, max_sessions=3, waiting=0, browser_connected=connected)
        app = srv.create_app(coordinator, pool=pool, manage_lifecycle=False)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://t") as c:
            resp = await c.get("/ready")
        assert resp.status_code == code
        assert resp.json()["pool"]["max_sessions"] == 3


class TestStatic:
    async def test_serves_index(self, coordinator, tmp_path):
        static = tmp_path / "public"
        static.mkdir()
        (static / "index.html").write_text("<h1>Drive to PDF</h1>", encoding="utf-8")
        app = srv.create_app(coordinator, static_dir=static, manage_lifecycle=False)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://t") as c:
            resp = await c.get("/")
            api = await c.get("/health")
        assert resp.status_code == 200
        assert "Drive to PDF" in resp.text
        assert api.status_code == 200


class TestLifespan:
    async def test_starts_and_stops_pool_and_coordinator(self):
        pool = MagicMock()
        pool.start = AsyncMock()
        pool.shutdown = AsyncMock()
        coord = MagicMock()
        coord.start = AsyncMock()
        coord.shutdown = AsyncMock()
        app = srv.create_app(coord, pool=pool)

        async with app.router.lifespan_context(app):
            pool.start.assert_awaited_once()
            coord.start.assert_awaited_once()

        coord.shutdown.assert_awaited_once()
        pool.shutdown.assert_awaited_once()


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParseServerArgs:
    def test_defaults(self, monkeypatch):
        for var in ("HOST", "PORT", "JOBS_DIR", "LOG_DIR", "MAX_SESSIONS", "NO_SANDBOX", "LOG_PASSWORD"):
            monkeypatch.delenv(f"PAGECAPTURE_{var}", raising=False)
        args = srv._parse_server_args([])
        assert args.host == "127.0.0.1"
        assert args.port == 3000
        assert args.max_sessions == 3
        assert args.no_sandbox is False
        assert args.log_password == ""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("PAGECAPTURE_PORT", "8080")
        monkeypatch.setenv("PAGECAPTURE_MAX_SESSIONS", "5")
        monkeypatch.setenv("PAGECAPTURE_NO_SANDBOX", "true")
        monkeypatch.setenv("PAGECAPTURE_JOBS_DIR", "/data/jobs")
        args = srv._parse_server_args([])
        assert args.port == 8080
        assert args.max_sessions == 5
        assert args.no_sandbox is True
        assert args.jobs_dir == "/data/jobs"

    def test_invalid_env_port_ignored(self, monkeypatch):
        monkeypatch.setenv("PAGECAPTURE_PORT", "eighty")
        assert srv._parse_server_args(["--port", "9000"]).port == 9000

    def test_build_app_wires_components(self, monkeypatch, tmp_path):
        monkeypatch.delenv("PAGECAPTURE_LOG_DIR", raising=False)
        args = srv._parse_server_args(["--jobs-dir", str(tmp_path / "jobs"), "--log-dir", "", "--max-sessions", "2"])
        app = srv.build_app(args)
        assert app.state.pool.health().max_sessions == 2
        assert app.state.log_dir is None
