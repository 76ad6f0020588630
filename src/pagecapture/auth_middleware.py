# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""ASGI Basic-auth middleware guarding the log viewer.

Pure ASGI middleware (no ``BaseHTTPMiddleware``). Only paths under the
protected prefixes are checked; everything else, and non-HTTP scopes such as
lifespan, pass straight through.

Auth flow:
1. Extract ``Authorization: Basic <base64(user:password)>``.
2. Compare both parts with ``hmac.compare_digest``.
3. On failure: send an RFC 9457 problem+json 401 with ``WWW-Authenticate``.

With no password configured the protected paths are always rejected.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging

from .problem_details import from_auth_missing

logger = logging.getLogger(__name__)

_DEFAULT_PROTECTED: tuple[str, ...] = ("/api/logs",)
_REALM = "pagecapture logs"


def parse_basic_credentials(header_value: str) -> tuple[str, str] | None:
    """Decode a ``Basic`` Authorization value into ``(user, password)``."""
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "basic" or not token:
        return None
    try:
        decoded = base64.b64decode(token.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    user, sep, password = decoded.partition(":")
    if not sep:
        return None
    return user, password


class BasicAuthMiddleware:
    """Require HTTP Basic credentials for a set of path prefixes.

    Constructor:
        ``BasicAuthMiddleware(app, username=..., password=..., protected=("/api/logs",))``
    """

    def __init__(
        self,
        app,
        *,
        username: str,
        password: str,
        protected: tuple[str, ...] = _DEFAULT_PROTECTED,
    ) -> None:
        self.app = app
        self._username = username.encode("utf-8")
        self._password = password.encode("utf-8")
        self._protected = protected

    def _is_protected(self, path: str) -> bool:
        return any(path == p or path.startswith(p.rstrip("/") + "/") for p in self._protected)

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http" or not self._is_protected(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        if self._authenticate(scope):
            await self.app(scope, receive, send)
            return

        logger.warning("Rejected unauthenticated request to %s", scope.get("path", ""))
        problem = from_auth_missing(instance=scope.get("path", ""))
        response = problem.to_response(headers={"WWW-Authenticate": f'Basic realm="{_REALM}"'})
        await response(scope, receive, send)

    def _authenticate(self, scope) -> bool:
        if not self._password:
            return False
        auth_value: str | None = None
        for name, value in scope.get("headers", []):
            if name.lower() == b"authorization":
                auth_value = value.decode("latin-1")
                break
        if auth_value is None:
            return False
        creds = parse_basic_credentials(auth_value)
        if creds is None:
            return False
        user_ok = hmac.compare_digest(creds[0].encode("utf-8"), self._username)
        password_ok = hmac.compare_digest(creds[1].encode("utf-8"), self._password)
        return user_ok and password_ok
