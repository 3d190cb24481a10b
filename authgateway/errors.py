"""
Error taxonomy for the auth gateway.

Every error carries the HTTP status the request handlers map it to. The
configuration validator never raises these; it records notes instead.
"""

from fastapi import status


class AuthGatewayError(Exception):
    """Base exception for gateway errors"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(AuthGatewayError):
    """Provider missing, disabled or malformed."""

    status_code = status.HTTP_400_BAD_REQUEST


class ProviderNotFound(ConfigError):
    status_code = status.HTTP_404_NOT_FOUND


class AuthDisabled(ConfigError):
    """The backend reports that authentication is turned off."""

    status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(AuthGatewayError):
    """Network failure or timeout talking to an IdP or the backend."""


class ProtocolError(AuthGatewayError):
    """OAuth error response, malformed discovery document or bad token payload."""


class InvalidExpiry(ProtocolError):
    pass


class TokenError(AuthGatewayError):
    """Token missing or unusable for the active provider."""

    status_code = status.HTTP_401_UNAUTHORIZED


class SessionError(AuthGatewayError):
    """Session cookie present but undecodable."""

    status_code = status.HTTP_401_UNAUTHORIZED


class UnsupportedOperation(AuthGatewayError):
    status_code = status.HTTP_400_BAD_REQUEST


__all__ = [
    "AuthGatewayError",
    "ConfigError",
    "ProviderNotFound",
    "AuthDisabled",
    "UpstreamError",
    "ProtocolError",
    "InvalidExpiry",
    "TokenError",
    "SessionError",
    "UnsupportedOperation",
]
