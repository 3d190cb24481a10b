"""
Bearer Token Middleware
=======================

Attaches the session's credential to requests bound for the backend API.

For paths under ``/api/`` that are not auth endpoints, the session cookie is
decoded and ``Authorization: Bearer <token>`` is added to the inbound
request, so whatever forwards the request to the backend sees a plain
bearer-authenticated call.

Rules:
    - The ID token is used when present, else the access token
    - An existing Authorization header is left untouched
    - An undecodable cookie is logged and the request passes through unchanged
"""

import logging
from typing import MutableMapping

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from ..auth.session import parse_session_cookie
from ..config import Settings
from ..errors import SessionError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/"

AUTH_ENDPOINTS = (
    "/api/login",
    "/api/refresh",
    "/api/userinfo",
    "/api/logout",
    "/api/authproviders",
)


def requires_auth(path: str) -> bool:
    """Whether a request path is backend API traffic that needs a bearer token."""
    if not path.startswith(API_PREFIX):
        return False
    for endpoint in AUTH_ENDPOINTS:
        if path == endpoint or path.startswith(endpoint + "/"):
            return False
    return True


def attach_bearer_token(scope: MutableMapping, token: str) -> None:
    """Replace the Authorization header of an ASGI scope."""
    headers = [(k, v) for k, v in scope.get("headers", []) if k.lower() != b"authorization"]
    headers.append((b"authorization", f"Bearer {token}".encode("latin-1")))
    scope["headers"] = headers


class BearerTokenMiddleware(BaseHTTPMiddleware):
    """Inject the session bearer token into backend API requests."""

    def __init__(self, app: ASGIApp, settings: Settings):
        super().__init__(app)
        self.settings = settings

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if requires_auth(request.url.path) and "authorization" not in request.headers:
            try:
                token_data = parse_session_cookie(request, self.settings)
            except SessionError as e:
                logger.warning(
                    "Ignoring undecodable session cookie",
                    extra={"path": request.url.path, "error": e.message},
                )
            else:
                token = token_data.get_auth_token()
                if token:
                    attach_bearer_token(request.scope, token)

        return await call_next(request)


__all__ = ["requires_auth", "attach_bearer_token", "BearerTokenMiddleware"]
