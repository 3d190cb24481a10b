"""
Shared fixtures for the auth gateway tests.

Upstream IdPs and the backend API are replaced by ``UpstreamStub``, an
``httpx.MockTransport`` handler routed by method and URL. Nothing here
touches the network.
"""

import base64
import json
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

# authgateway.main builds a module-level app from the environment on import
os.environ.setdefault("API_URL", "https://api.example.com")
os.environ.setdefault("BASE_UI_URL", "https://ui.example.com")

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from authgateway.auth.oauth import HttpOptions
from authgateway.auth.session import decode_session
from authgateway.config import Settings
from authgateway.main import create_app
from authgateway.models import AuthConfig, TokenData
from authgateway.providers.registry import ProviderRegistry, StaticConfigSource


ISSUER = "https://idp.example.com/realms/test"
OIDC_AUTHORIZE = f"{ISSUER}/protocol/openid-connect/auth"
OIDC_TOKEN = f"{ISSUER}/protocol/openid-connect/token"
OIDC_USERINFO = f"{ISSUER}/protocol/openid-connect/userinfo"
OIDC_LOGOUT = f"{ISSUER}/protocol/openid-connect/logout"

OAUTH2_BASE = "https://oauth.example.com"
AAP_URL = "https://aap.example.com"
OPENSHIFT_URL = "https://oauth-openshift.apps.example.com"
API_URL = "https://api.example.com"


# ============================================================================
# Upstream Stub
# ============================================================================

Responder = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class UpstreamStub:
    """Routes mock requests by (method, scheme://host[:port]/path)."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Responder] = {}
        self.requests: List[httpx.Request] = []

    @staticmethod
    def key(method: str, url: Union[str, httpx.URL]) -> Tuple[str, str]:
        url = httpx.URL(url)
        port = f":{url.port}" if url.port else ""
        return method.upper(), f"{url.scheme}://{url.host}{port}{url.path}"

    def add(self, method: str, url: str, status_code: int = 200, json_body: Any = None, **kwargs) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if json_body is not None:
                return httpx.Response(status_code, json=json_body, **kwargs)
            return httpx.Response(status_code, **kwargs)
        self.routes[self.key(method, url)] = respond

    def add_handler(self, method: str, url: str, responder: Responder) -> None:
        self.routes[self.key(method, url)] = responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get(self.key(request.method, request.url))
        if responder is None:
            return httpx.Response(404, json={"error": "not_found"})
        if isinstance(responder, Exception):
            raise responder
        if isinstance(responder, httpx.Response):
            return responder
        return responder(request)

    def requests_to(self, method: str, url: str) -> List[httpx.Request]:
        wanted = self.key(method, url)
        return [r for r in self.requests if self.key(r.method, r.url) == wanted]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def form_of(request: httpx.Request) -> Dict[str, str]:
    """Decoded form body of a captured request."""
    return dict(httpx.QueryParams(request.content.decode("utf-8")))


def make_jwt(claims: Dict[str, Any]) -> str:
    """HS256 token; the gateway decodes it without checking the signature."""
    return jwt.encode(claims, "test-signing-secret-0123456789abcdef0123", algorithm="HS256")


@dataclass
class SigningKey:
    private_key: rsa.RSAPrivateKey
    public_pem: str

    def sign(self, claims: Dict[str, Any]) -> str:
        return jwt.encode(claims, self.private_key, algorithm="RS256")


def new_signing_key() -> SigningKey:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    public_pem = private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return SigningKey(private_key=private_key, public_pem=public_pem)


def encode_cookie(token_data: TokenData) -> str:
    raw = json.dumps(token_data.model_dump()).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def session_from(response, settings: Settings) -> TokenData:
    """Decode the session cookie set on a TestClient response."""
    value = response.cookies.get(settings.SESSION_COOKIE_NAME)
    assert value, "session cookie was not set"
    return decode_session(value.strip('"'))


def future_exp(seconds: int = 3600) -> int:
    return int(time.time()) + seconds


# ============================================================================
# Provider Configuration
# ============================================================================

def provider_entry(name: str, **spec: Any) -> Dict[str, Any]:
    return {"metadata": {"name": name}, "spec": spec}


def default_providers() -> List[Dict[str, Any]]:
    return [
        provider_entry(
            "oidc-test",
            providerType="oidc",
            issuer=ISSUER,
            clientId="gateway",
            clientSecret="oidc-secret",
        ),
        provider_entry(
            "oauth2-test",
            providerType="oauth2",
            clientId="oauth2-client",
            authorizationUrl=f"{OAUTH2_BASE}/authorize",
            tokenUrl=f"{OAUTH2_BASE}/token",
            userinfoUrl=f"{OAUTH2_BASE}/userinfo",
            scopes="read:user user:email",
        ),
        provider_entry("aap-test", providerType="aap", clientId="aap-client", authUrl=AAP_URL),
        provider_entry(
            "openshift-test",
            providerType="openshift",
            clientId="openshift-client",
            authUrl=OPENSHIFT_URL,
            tokenUrl=f"{OPENSHIFT_URL}/oauth/token",
        ),
        provider_entry("k8s-test", providerType="k8s"),
        provider_entry(
            "disabled-test",
            providerType="oidc",
            issuer=ISSUER,
            clientId="gateway",
            enabled=False,
        ),
    ]


def discovery_document(base: str = ISSUER) -> Dict[str, Any]:
    return {
        "issuer": base,
        "authorization_endpoint": f"{base}/protocol/openid-connect/auth",
        "token_endpoint": f"{base}/protocol/openid-connect/token",
        "userinfo_endpoint": f"{base}/protocol/openid-connect/userinfo",
        "end_session_endpoint": f"{base}/protocol/openid-connect/logout",
        "scopes_supported": ["openid", "profile", "email"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
    }


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Settings for tests; no TLS so cookies are not Secure."""
    return Settings(API_URL=API_URL, BASE_UI_URL="https://ui.example.com")


@pytest.fixture(scope="session")
def signing_key() -> SigningKey:
    """RS256 key whose public half is configured as JWT_VERIFY_PUBLIC_KEY."""
    return new_signing_key()


@pytest.fixture(scope="session")
def other_signing_key() -> SigningKey:
    return new_signing_key()


@pytest.fixture
def verifying_settings(settings, signing_key) -> Settings:
    return settings.model_copy(update={"JWT_VERIFY_PUBLIC_KEY": signing_key.public_pem})


@pytest.fixture
def upstream() -> UpstreamStub:
    stub = UpstreamStub()
    stub.add("GET", f"{ISSUER}/.well-known/openid-configuration", json_body=discovery_document())
    return stub


@pytest.fixture
def http_options(upstream) -> HttpOptions:
    return HttpOptions(timeout=5.0, transport=upstream.transport())


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig.model_validate({"providers": default_providers(), "defaultProvider": "oidc-test"})


@pytest.fixture
def registry(settings, auth_config, upstream) -> ProviderRegistry:
    return ProviderRegistry(
        settings,
        source=StaticConfigSource(auth_config),
        transport=upstream.transport(),
    )


@pytest.fixture
def app(settings, registry):
    """Create test FastAPI application"""
    return create_app(settings=settings, registry=registry)


@pytest.fixture
def client(app) -> TestClient:
    """Create test client"""
    return TestClient(app)


@pytest.fixture
def login_session(client, settings) -> Callable[[TokenData], None]:
    """Install a session cookie on the test client."""
    def install(token_data: TokenData, cookie_value: Optional[str] = None) -> None:
        client.cookies.set(settings.SESSION_COOKIE_NAME, cookie_value or encode_cookie(token_data))
    return install
