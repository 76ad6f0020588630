# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for BasicAuthMiddleware — credential parsing and path protection."""

from __future__ import annotations

import base64

import httpx
import pytest
from starlette.applications import Starlette
from starlette.responses import PlainTextResponse
from starlette.routing import Route

from pagecapture.auth_middleware import BasicAuthMiddleware, parse_basic_credentials


def _basic(user: str, password: str) -> str:
    return "Basic " + base64.b64encode(f"{user}:{password}".encode()).decode()


async def _ok(request):
    return PlainTextResponse("ok")


def _make_app(password: str = "pw", protected: tuple[str, ...] = ("/api/logs",)):
    routes = [Route(path, _ok) for path in ("/api/logs", "/api/logs/today", "/api/logsx", "/open")]
    app = Starlette(routes=routes)
    return BasicAuthMiddleware(app, username="admin", password=password, protected=protected)


@pytest.fixture
async def client():
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=_make_app()), base_url="http://t") as c:
        yield c


class TestParseBasicCredentials:
    def test_valid(self):
        assert parse_basic_credentials(_basic("admin", "a:b")) == ("admin", "a:b")

    def test_scheme_case_insensitive(self):
        token = base64.b64encode(b"u:p").decode()
        assert parse_basic_credentials(f"basic {token}") == ("u", "p")

    @pytest.mark.parametrize(
        "value",
        ["Bearer abc", "Basic", "Basic !!!notbase64", "Basic " + base64.b64encode(b"nocolon").decode()],
    )
    def test_rejected(self, value):
        assert parse_basic_credentials(value) is None


class TestMiddleware:
    async def test_unprotected_path_passes(self, client):
        resp = await client.get("/open")
        assert resp.status_code == 200

    async def test_prefix_without_separator_not_protected(self, client):
        assert (await client.get("/api/logsx")).status_code == 200

    async def test_subpath_protected(self, client):
        assert (await client.get("/api/logs/today")).status_code == 401

    async def test_valid_credentials(self, client):
        resp = await client.get("/api/logs", headers={"Authorization": _basic("admin", "pw")})
        assert resp.status_code == 200
        assert resp.text == "ok"

    async def test_wrong_user(self, client):
        resp = await client.get("/api/logs", headers={"Authorization": _basic("root", "pw")})
        assert resp.status_code == 401

    async def test_rejection_is_problem_json(self, client):
        resp = await client.get("/api/logs")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == 'Basic realm="pagecapture logs"'
        body = resp.json()
        assert body["type"].endswith("/auth-required")
        assert body["instance"] == "/api/logs"

    async def test_empty_password_always_rejects(self):
        app = _make_app(password="")
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://t") as c:
            resp = await c.get("/api/logs", headers={"Authorization": _basic("admin", "")})
        assert resp.status_code == 401

    async def test_non_http_scope_passes_through(self):
        seen = []

        async def inner(scope, receive, send):
            seen.append(scope["type"])

        mw = BasicAuthMiddleware(inner, username="admin", password="pw")
        await mw({"type": "lifespan"}, None, None)
        assert seen == ["lifespan"]
