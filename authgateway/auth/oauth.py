"""
OAuth 2.0 / OIDC protocol engine.

This module implements the pieces every provider variant shares:
- PKCE verifier/challenge generation (S256)
- The OAuth ``state`` parameter (provider name plus optional verifier)
- Authorization-code and refresh-token exchange with response normalization
- OIDC discovery fetch and internal/external endpoint rewriting
- Bearer userinfo requests
"""

import base64
import hashlib
import logging
import math
import secrets
import ssl
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx
from pydantic import BaseModel, ConfigDict

from ..config import Settings
from ..errors import InvalidExpiry, ProtocolError, TokenError, UpstreamError
from ..models import TokenData

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 10.0
STATE_PREFIX = "provider:"
STATE_VERIFIER_MARKER = ":pkce:"
DISCOVERY_PATH = "/.well-known/openid-configuration"
FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}


# =============================================================================
# HTTP Client Options
# =============================================================================

@dataclass(frozen=True)
class HttpOptions:
    """
    How upstream HTTP clients are built.

    ``transport`` is only set in tests, where it is an ``httpx.MockTransport``.
    """

    timeout: float = DEFAULT_TIMEOUT
    verify: Union[bool, ssl.SSLContext] = True
    transport: Optional[httpx.AsyncBaseTransport] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "HttpOptions":
        return cls(
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            verify=settings.verify,
            transport=transport,
        )

    def client(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            verify=self.verify,
            transport=transport or self.transport,
        )

    def base_transport(self) -> httpx.AsyncBaseTransport:
        """Transport to wrap when a provider needs to rewrite responses."""
        if self.transport is not None:
            return self.transport
        return httpx.AsyncHTTPTransport(verify=self.verify)


# =============================================================================
# PKCE Helper Functions
# =============================================================================

def generate_code_verifier() -> str:
    """
    Generate a cryptographically random code verifier for PKCE.

    Returns:
        Base64-URL-encoded random string (43 characters)
    """
    verifier_bytes = secrets.token_bytes(32)
    return base64.urlsafe_b64encode(verifier_bytes).decode('utf-8').rstrip('=')


def generate_code_challenge(verifier: str) -> str:
    """
    Generate code challenge from verifier using S256 method.

    Args:
        verifier: Code verifier string

    Returns:
        Base64-URL-encoded SHA256 hash of verifier
    """
    digest = hashlib.sha256(verifier.encode('utf-8')).digest()
    return base64.urlsafe_b64encode(digest).decode('utf-8').rstrip('=')


# =============================================================================
# State Parameter
# =============================================================================

def encode_state(provider_name: str, code_verifier: Optional[str] = None) -> str:
    """
    Build the OAuth ``state`` value: ``provider:<name>``, optionally followed
    by ``:pkce:<verifier>`` when the verifier fallback channel is enabled.
    """
    state = f"{STATE_PREFIX}{provider_name}"
    if code_verifier:
        state += f"{STATE_VERIFIER_MARKER}{code_verifier}"
    return state


def parse_state(state: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a ``state`` value into (provider name, code verifier).

    Either element is None when absent; a state that does not start with
    ``provider:`` yields (None, None).
    """
    if not state or not state.startswith(STATE_PREFIX):
        return None, None

    body = state[len(STATE_PREFIX):]
    provider_name, marker, verifier = body.partition(STATE_VERIFIER_MARKER)
    return (provider_name or None), (verifier if marker and verifier else None)


# =============================================================================
# URL Helpers
# =============================================================================

def sanitize_url(url: str) -> str:
    """Drop query string and fragment so URLs can be logged safely."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def replace_base_url(endpoint: str, from_url: str, to_url: str) -> str:
    """
    Rewrite scheme and host of ``endpoint`` from ``from_url`` to ``to_url``.

    The endpoint is returned unchanged when its host differs from
    ``from_url``'s host, so endpoints on other hosts are never touched.
    """
    if not endpoint or not from_url or not to_url:
        return endpoint

    endpoint_parts = urlsplit(endpoint)
    from_parts = urlsplit(from_url)
    if endpoint_parts.netloc != from_parts.netloc:
        return endpoint

    to_parts = urlsplit(to_url)
    return urlunsplit((
        to_parts.scheme,
        to_parts.netloc,
        endpoint_parts.path,
        endpoint_parts.query,
        endpoint_parts.fragment,
    ))


def add_query_params(url: str, params: Dict[str, str]) -> str:
    separator = "&" if urlsplit(url).query else "?"
    return f"{url}{separator}{urlencode(params)}"


def join_scopes(scopes: Optional[List[str]], default: str) -> str:
    if scopes:
        return " ".join(scopes)
    return default


# =============================================================================
# Token Response Normalization
# =============================================================================

def coerce_expires_in(value: Any) -> Optional[int]:
    """
    Convert an upstream ``expires_in`` into whole seconds.

    JSON numbers and numeric strings are accepted; booleans, non-finite
    floats and any other type raise InvalidExpiry. A missing value yields None.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidExpiry("invalid parameter value for expires_in")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidExpiry(f"invalid parameter value for expires_in: {value!r}")
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as e:
            raise InvalidExpiry(f"invalid parameter value for expires_in: {value!r}") from e
    raise InvalidExpiry("invalid parameter value for expires_in")


def normalize_token_response(data: Dict[str, Any]) -> Tuple[TokenData, Optional[int]]:
    """
    Turn a token endpoint JSON body into TokenData and an expiry.

    Raises:
        ProtocolError: If the body carries an OAuth error, lacks an access
            token or has an unusable ``expires_in``
    """
    if data.get("error"):
        message = f"oauth2 error: {data['error']}"
        if data.get("error_description"):
            message += f" - {data['error_description']}"
        raise ProtocolError(message)

    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise ProtocolError("token response missing access_token")

    token_data = TokenData(accessToken=access_token)

    id_token = data.get("id_token")
    if isinstance(id_token, str) and id_token:
        token_data.idToken = id_token

    refresh_token = data.get("refresh_token")
    if isinstance(refresh_token, str):
        token_data.refreshToken = refresh_token

    return token_data, coerce_expires_in(data.get("expires_in"))


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        error_data = response.json()
    except ValueError:
        error_data = None
    if isinstance(error_data, dict):
        description = error_data.get("error_description")
        error = error_data.get("error")
        if error and description:
            return f"{error}: {description}"
        if description or error:
            return str(description or error)
    return f"{default} (status {response.status_code})"


# =============================================================================
# OAuth Client
# =============================================================================

@dataclass
class OAuthClientConfig:
    client_id: str
    authorize_url: str
    token_url: str
    redirect_uri: str
    scope: str
    client_secret: Optional[str] = None
    extra_token_params: Dict[str, str] = field(default_factory=dict)


class OAuthClient:
    """
    Authorization-code client for one provider.

    Code exchange and refresh share :meth:`_request_token` so both produce
    identically normalized TokenData.
    """

    def __init__(
        self,
        config: OAuthClientConfig,
        http: HttpOptions,
        token_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.http = http
        self._token_transport = token_transport

    def authorization_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": self.config.scope,
            "state": state,
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return add_query_params(self.config.authorize_url, params)

    async def exchange_code(
        self,
        code: str,
        code_verifier: Optional[str] = None,
    ) -> Tuple[TokenData, Optional[int]]:
        """
        Exchange an authorization code for tokens.

        An empty verifier is sent as-is; the IdP rejects it if it required
        PKCE and that surfaces as a ProtocolError.
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_uri,
        }
        if code_verifier:
            payload["code_verifier"] = code_verifier
        return await self._request_token(payload)

    async def refresh(self, refresh_token: str) -> Tuple[TokenData, Optional[int]]:
        if not refresh_token:
            raise TokenError("no refresh token available")

        token_data, expires_in = await self._request_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        if not token_data.refreshToken:
            token_data.refreshToken = refresh_token
        return token_data, expires_in

    async def _request_token(self, params: Dict[str, str]) -> Tuple[TokenData, Optional[int]]:
        payload = dict(params)
        payload["client_id"] = self.config.client_id
        if self.config.client_secret:
            payload["client_secret"] = self.config.client_secret
        payload.update(self.config.extra_token_params)

        token_url = self.config.token_url
        logger.info(
            "Requesting token",
            extra={"token_url": sanitize_url(token_url), "grant_type": params.get("grant_type")},
        )

        try:
            async with self.http.client(self._token_transport) as client:
                response = await client.post(token_url, data=payload, headers=FORM_HEADERS)
        except httpx.HTTPError as e:
            raise UpstreamError(f"token request to {sanitize_url(token_url)} failed: {e}") from e

        if response.status_code != 200:
            raise ProtocolError(f"Token exchange failed: {_error_message(response, 'token endpoint error')}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError("token endpoint returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ProtocolError("token endpoint returned a non-object JSON body")

        logger.info("Token response received", extra={"response_keys": sorted(data.keys())})
        return normalize_token_response(data)


# =============================================================================
# OIDC Discovery
# =============================================================================

class OpenIDConfiguration(BaseModel):
    """Fields of the discovery document the gateway uses."""

    model_config = ConfigDict(extra="allow")

    issuer: Optional[str] = None
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None
    scopes_supported: Optional[List[str]] = None
    grant_types_supported: Optional[List[str]] = None


def discovery_url(issuer: str) -> str:
    return f"{issuer.rstrip('/')}{DISCOVERY_PATH}"


async def fetch_discovery_document(url: str, http: HttpOptions) -> Dict[str, Any]:
    """
    GET a discovery document.

    Raises:
        UpstreamError: If the endpoint is unreachable
        ProtocolError: On a non-200 status or a non-object JSON body
    """
    try:
        async with http.client() as client:
            response = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as e:
        raise UpstreamError(f"connection error: {e}") from e

    if response.status_code != 200:
        raise ProtocolError(f"HTTP {response.status_code}: endpoint returned error")

    try:
        document = response.json()
    except ValueError as e:
        raise ProtocolError(f"invalid JSON response: {e}") from e
    if not isinstance(document, dict):
        raise ProtocolError("invalid JSON response: expected an object")
    return document


async def fetch_openid_configuration(issuer: str, http: HttpOptions) -> OpenIDConfiguration:
    """
    Fetch and check ``{issuer}/.well-known/openid-configuration``.

    Raises:
        ProtocolError: If the token or authorization endpoint is missing
    """
    document = await fetch_discovery_document(discovery_url(issuer), http)
    try:
        config = OpenIDConfiguration.model_validate(document)
    except ValueError as e:
        raise ProtocolError(f"malformed discovery document: {e}") from e

    if not config.token_endpoint or not config.authorization_endpoint:
        raise ProtocolError("malformed discovery document: missing authorization or token endpoint")
    return config


# =============================================================================
# Userinfo
# =============================================================================

async def request_userinfo(
    url: str,
    access_token: str,
    http: HttpOptions,
    forwarded_from: Optional[str] = None,
) -> httpx.Response:
    """
    GET a userinfo endpoint with a bearer token.

    ``forwarded_from`` is the externally visible auth URL; its host and
    scheme are passed as X-Forwarded-Host/X-Forwarded-Proto.

    Raises:
        UpstreamError: If the endpoint is unreachable
    """
    headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
    if forwarded_from:
        parts = urlsplit(forwarded_from)
        headers["X-Forwarded-Host"] = parts.netloc
        headers["X-Forwarded-Proto"] = parts.scheme

    try:
        async with http.client() as client:
            return await client.get(url, headers=headers)
    except httpx.HTTPError as e:
        raise UpstreamError(f"userinfo request to {sanitize_url(url)} failed: {e}") from e


def userinfo_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise ProtocolError("userinfo endpoint returned invalid JSON") from e
    if not isinstance(data, dict):
        raise ProtocolError("userinfo endpoint returned a non-object JSON body")
    return data


__all__ = [
    "HttpOptions",
    "generate_code_verifier",
    "generate_code_challenge",
    "encode_state",
    "parse_state",
    "sanitize_url",
    "replace_base_url",
    "add_query_params",
    "join_scopes",
    "coerce_expires_in",
    "normalize_token_response",
    "OAuthClientConfig",
    "OAuthClient",
    "OpenIDConfiguration",
    "discovery_url",
    "fetch_discovery_document",
    "fetch_openid_configuration",
    "request_userinfo",
    "userinfo_json",
]
