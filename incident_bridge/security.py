"""Optional HTTP Basic auth for the API."""

from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


@dataclass(frozen=True)
class BasicAuthCredentials:
    username: str
    password: str


def parse_basic_auth(header_value: str) -> BasicAuthCredentials | None:
    """Decode an `Authorization: Basic ...` header, None if malformed."""
    if not header_value:
        return None

    scheme, _, param = header_value.partition(" ")
    if scheme.lower() != "basic" or not param:
        return None

    try:
        decoded = base64.b64decode(param, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None

    username, sep, password = decoded.partition(":")
    if sep != ":":
        return None
    return BasicAuthCredentials(username=username, password=password)


class BasicAuthMiddleware(BaseHTTPMiddleware):
    """Require the configured credentials on every path outside `open_paths`."""

    def __init__(self, app, *, username: str, password: str, open_paths: set[str] | None = None):
        super().__init__(app)
        self._expected = BasicAuthCredentials(username, password)
        self._open_paths = open_paths or {"/health"}

    def _matches(self, creds: BasicAuthCredentials) -> bool:
        # Compare both parts even if the first one already failed
        user_ok = secrets.compare_digest(creds.username, self._expected.username)
        pass_ok = secrets.compare_digest(creds.password, self._expected.password)
        return user_ok and pass_ok

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self._open_paths:
            return await call_next(request)

        creds = parse_basic_auth(request.headers.get("Authorization", ""))
        if creds is None or not self._matches(creds):
            return Response(
                content="Unauthorized",
                status_code=401,
                headers={"WWW-Authenticate": 'Basic realm="IncidentBridge", charset="UTF-8"'},
            )
        return await call_next(request)
