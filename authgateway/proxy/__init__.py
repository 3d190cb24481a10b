"""Request-side helpers for traffic forwarded to the backend API."""

from .middleware import BearerTokenMiddleware, requires_auth

__all__ = ["BearerTokenMiddleware", "requires_auth"]
