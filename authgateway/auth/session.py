"""
Session Cookie Codec
====================

Encodes provider-issued credentials into the session cookie and reads them
back, and manages the short-lived per-provider PKCE verifier cookie.

Cookie format:
    value = base64(JSON(TokenData))
    attributes = HttpOnly; SameSite=Strict; Path=/; Secure when TLS is active

A request without a session cookie decodes to an empty TokenData. A cookie
that is present but cannot be decoded raises SessionError, and the caller
must clear it.
"""

import base64
import binascii
import json
import logging
import re
from typing import Optional

from fastapi import Request, Response
from pydantic import ValidationError

from ..config import Settings
from ..errors import SessionError
from ..models import TokenData

logger = logging.getLogger(__name__)

CLEAR_SITE_DATA_HEADER = "Clear-Site-Data"
CLEAR_COOKIES_VALUE = '"cookies"'

_COOKIE_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


# =============================================================================
# Encoding
# =============================================================================

def encode_session(token_data: TokenData) -> str:
    """
    Serialize a TokenData into a cookie value.

    The ``provider`` key is omitted when empty.
    """
    payload = token_data.model_dump()
    if not payload.get("provider"):
        payload.pop("provider", None)
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_session(value: str) -> TokenData:
    """
    Deserialize a cookie value.

    Raises:
        SessionError: If the value is not base64-encoded JSON of a TokenData
    """
    try:
        raw = base64.b64decode(value.encode("ascii"), validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise SessionError(f"failed to decode session cookie: {e}") from e

    if not isinstance(payload, dict):
        raise SessionError("session cookie does not contain a JSON object")

    try:
        return TokenData.model_validate(payload)
    except ValidationError as e:
        raise SessionError(f"invalid session cookie payload: {e.error_count()} error(s)") from e


# =============================================================================
# Session Cookie
# =============================================================================

def parse_session_cookie(request: Request, settings: Settings) -> TokenData:
    """
    Read the session from an inbound request.

    Returns:
        The decoded TokenData, or an empty one when no cookie is present.

    Raises:
        SessionError: If the cookie is present but undecodable
    """
    value = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if value is None:
        logger.debug("No session cookie found in request")
        return TokenData()

    token_data = decode_session(value)
    logger.debug(
        "Parsed session cookie",
        extra={
            "provider": token_data.provider,
            "id_token_length": len(token_data.idToken),
            "access_token_length": len(token_data.accessToken),
        },
    )
    return token_data


def set_session_cookie(response: Response, token_data: TokenData, settings: Settings) -> None:
    """Write the whole session as one Set-Cookie."""
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=encode_session(token_data),
        path="/",
        secure=settings.tls_enabled,
        httponly=True,
        samesite="strict",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    """Expire the session cookie and ask the browser to drop site cookies."""
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        secure=settings.tls_enabled,
        httponly=True,
        samesite="strict",
    )
    response.headers[CLEAR_SITE_DATA_HEADER] = CLEAR_COOKIES_VALUE


# =============================================================================
# PKCE Verifier Cookie
# =============================================================================

def pkce_cookie_name(settings: Settings, provider_name: str) -> str:
    safe_name = _COOKIE_NAME_UNSAFE.sub("_", provider_name) or "default"
    return f"{settings.SESSION_COOKIE_NAME}-pkce-{safe_name}"


def set_pkce_cookie(
    response: Response,
    provider_name: str,
    code_verifier: str,
    settings: Settings,
) -> None:
    """
    Store the PKCE verifier until the callback.

    SameSite=Lax so the cookie survives the redirect back from the IdP.
    """
    response.set_cookie(
        key=pkce_cookie_name(settings, provider_name),
        value=code_verifier,
        max_age=settings.PKCE_COOKIE_MAX_AGE,
        path="/",
        secure=settings.tls_enabled,
        httponly=True,
        samesite="lax",
    )


def read_pkce_cookie(request: Request, provider_name: str, settings: Settings) -> Optional[str]:
    return request.cookies.get(pkce_cookie_name(settings, provider_name)) or None


def clear_pkce_cookie(response: Response, provider_name: str, settings: Settings) -> None:
    response.delete_cookie(
        key=pkce_cookie_name(settings, provider_name),
        path="/",
        secure=settings.tls_enabled,
        httponly=True,
        samesite="lax",
    )


__all__ = [
    "CLEAR_SITE_DATA_HEADER",
    "CLEAR_COOKIES_VALUE",
    "encode_session",
    "decode_session",
    "parse_session_cookie",
    "set_session_cookie",
    "clear_session_cookie",
    "pkce_cookie_name",
    "set_pkce_cookie",
    "read_pkce_cookie",
    "clear_pkce_cookie",
]
