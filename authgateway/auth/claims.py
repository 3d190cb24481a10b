"""
Claims extraction utilities.

This module handles:
- Nested claim-path lookup over decoded JSON objects
- Username resolution with a fixed fallback order
- JWT payload decoding (unverified by default, optionally key-verified)
- Kubernetes service-account username extraction
"""

import json
import logging
import math
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import jwt
from jwt.exceptions import PyJWTError

from ..errors import ConfigError, TokenError

logger = logging.getLogger(__name__)


ANONYMOUS_USERNAME = "Anonymous"

# Tried in order after the provider-configured claim path
USERNAME_FALLBACK_CLAIMS: Tuple[str, ...] = (
    "preferred_username",
    "email",
    "sub",
    "name",
    "username",
)

SERVICE_ACCOUNT_PREFIX = "system:serviceaccount:"
LEGACY_SERVICE_ACCOUNT_CLAIM = "kubernetes.io/serviceaccount/service-account.name"


# =============================================================================
# Path Lookup
# =============================================================================

def get_value_by_path(data: Dict[str, Any], path: Sequence[str]) -> Tuple[Any, bool]:
    """
    Look up a value in nested dictionaries.

    Segments are used as literal keys, so ``["kubernetes.io", "name"]``
    addresses a key that itself contains a dot.

    Args:
        data: Decoded JSON object
        path: Ordered key segments

    Returns:
        Tuple of (value, found). ``found`` is False when a segment is missing
        or a non-object is met before the last segment.
    """
    if not path or not isinstance(data, dict):
        return None, False

    current: Any = data
    for segment in path[:-1]:
        current = current.get(segment)
        if not isinstance(current, dict):
            return None, False

    if path[-1] in current:
        return current[path[-1]], True
    return None, False


def claim_value_to_string(value: Any) -> Optional[str]:
    """
    Render a claim value as a username string.

    Whole-number floats lose their decimal part (JSON numbers decode as
    floats for large ids), booleans become ``true``/``false`` and compound
    values are JSON-encoded. ``None`` means the claim is absent.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return f"{value:.0f}"
        return repr(value)
    return json.dumps(value, separators=(",", ":"))


def check_claim_path(claim_path: Sequence[str]) -> List[str]:
    """
    Validate a configured claim path.

    Raises:
        ConfigError: If the path is empty or contains a blank segment
    """
    if not claim_path:
        raise ConfigError("claim path is empty")
    for index, segment in enumerate(claim_path):
        if not segment or not segment.strip():
            raise ConfigError(f"claim path segment {index} is empty")
    return list(claim_path)


def extract_claim_value(data: Dict[str, Any], claim_path: Sequence[str]) -> Optional[str]:
    """
    Resolve a configured claim path to a string.

    Returns:
        The rendered value, or None when the claim is absent.

    Raises:
        ConfigError: If the claim path itself is malformed
    """
    path = check_claim_path(claim_path)
    value, found = get_value_by_path(data, path)
    if not found:
        return None
    return claim_value_to_string(value)


# =============================================================================
# Username Resolution
# =============================================================================

def extract_username(data: Dict[str, Any], claim_path: Optional[Sequence[str]] = None) -> Optional[str]:
    """
    Resolve a username from userinfo or token claims.

    Order: the configured claim path, then ``preferred_username``, ``email``,
    ``sub``, ``name`` and ``username``. Fallback claims only count when they
    hold a non-empty string.

    Args:
        data: Decoded userinfo response or JWT claims
        claim_path: Provider-configured claim path

    Returns:
        The username, or None if nothing resolved.
    """
    if claim_path:
        try:
            value = extract_claim_value(data, claim_path)
        except ConfigError as e:
            logger.warning(
                "Invalid username claim path",
                extra={"claim_path": "|".join(claim_path), "error": e.message},
            )
            value = None
        if value:
            return value

    for claim in USERNAME_FALLBACK_CLAIMS:
        value, found = get_value_by_path(data, [claim])
        if found and isinstance(value, str) and value:
            if claim_path and [claim] != list(claim_path):
                logger.info(
                    f"Using '{claim}' claim as username fallback",
                    extra={"configured_claim": "|".join(claim_path)},
                )
            return value

    return None


def resolve_username(data: Dict[str, Any], claim_path: Optional[Sequence[str]] = None) -> str:
    """Like :func:`extract_username` but degrades to ``Anonymous``."""
    username = extract_username(data, claim_path)
    if not username:
        logger.warning(
            "No username claim found, user will appear as 'Anonymous'",
            extra={"available_claims": sorted(data.keys()) if isinstance(data, dict) else []},
        )
        return ANONYMOUS_USERNAME
    return username


# =============================================================================
# JWT Decoding
# =============================================================================

def decode_jwt_claims(
    token: str,
    verify_key: Optional[str] = None,
    algorithms: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Decode the payload of a JWT.

    Without ``verify_key`` the signature is NOT checked: the token is trusted
    because it came from the backend-validated session or the IdP token
    endpoint over TLS. With a key, signature and expiry are verified.

    Args:
        token: Encoded JWT
        verify_key: Optional PEM public key
        algorithms: Algorithms accepted with ``verify_key``

    Returns:
        Claims dictionary

    Raises:
        TokenError: If the token is empty, malformed or fails verification
    """
    if not token:
        raise TokenError("token is empty")
    if token.count(".") != 2:
        raise TokenError("invalid JWT format: expected 3 segments")

    try:
        if verify_key:
            claims = jwt.decode(
                token,
                verify_key,
                algorithms=algorithms or ["RS256"],
                options={"verify_aud": False},
            )
        else:
            claims = jwt.decode(token, options={"verify_signature": False})
    except PyJWTError as e:
        raise TokenError(f"failed to decode JWT: {e}") from e

    if not isinstance(claims, dict):
        raise TokenError("JWT payload is not a JSON object")
    return claims


def token_expires_in(claims: Dict[str, Any], now: Optional[float] = None) -> Optional[int]:
    """
    Seconds remaining until the ``exp`` claim, clamped at zero.

    Returns:
        None when the token carries no finite numeric ``exp``.
    """
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    if isinstance(exp, float) and not math.isfinite(exp):
        return None
    current = time.time() if now is None else now
    try:
        return max(0, int(exp - current))
    except OverflowError:
        return None


def service_account_username(claims: Dict[str, Any]) -> Optional[str]:
    """
    Username of a Kubernetes service-account token.

    Precedence: nested ``kubernetes.io.serviceaccount.name``, the legacy flat
    claim, the name segment of ``system:serviceaccount:<ns>:<name>`` in
    ``sub``, then ``sub`` verbatim.
    """
    value, found = get_value_by_path(claims, ["kubernetes.io", "serviceaccount", "name"])
    if found and isinstance(value, str) and value:
        return value

    legacy = claims.get(LEGACY_SERVICE_ACCOUNT_CLAIM)
    if isinstance(legacy, str) and legacy:
        return legacy

    sub = claims.get("sub")
    if isinstance(sub, str) and sub:
        if sub.startswith(SERVICE_ACCOUNT_PREFIX):
            parts = sub.split(":")
            if len(parts) == 4 and parts[3]:
                return parts[3]
        return sub

    return None


__all__ = [
    "ANONYMOUS_USERNAME",
    "USERNAME_FALLBACK_CLAIMS",
    "get_value_by_path",
    "claim_value_to_string",
    "check_claim_path",
    "extract_claim_value",
    "extract_username",
    "resolve_username",
    "decode_jwt_claims",
    "token_expires_in",
    "service_account_username",
]
