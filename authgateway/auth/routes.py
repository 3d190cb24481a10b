"""
Authentication routes for login, refresh, logout and identity resolution.

This module implements the browser-facing side of the authorization code
flow with PKCE for every configured provider, plus direct bearer-token login
for token providers and the provider configuration test endpoint.

Every handler resolves its provider through the registry, which refetches
provider configuration on each call. Any failure that leaves the session
unusable clears the session cookie and sends ``Clear-Site-Data``.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse

from ..config import Settings
from ..errors import AuthGatewayError, SessionError, UpstreamError, UnsupportedOperation
from ..models import (
    ExpiresInResponse,
    LoginParameters,
    ProviderSpec,
    RedirectResponse,
    TokenData,
    TokenLoginParameters,
    UserInfoResponse,
)
from ..providers.k8s import K8sTokenProvider
from ..providers.registry import ProviderRegistry
from ..providers.validation import validate_provider
from .oauth import generate_code_challenge, generate_code_verifier, parse_state
from .session import (
    clear_pkce_cookie,
    clear_session_cookie,
    parse_session_cookie,
    read_pkce_cookie,
    set_pkce_cookie,
    set_session_cookie,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(tags=["authentication"])


# =============================================================================
# Dependencies
# =============================================================================

def get_settings_dep(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_registry(request: Request) -> ProviderRegistry:
    """Provider registry shared by the application."""
    return request.app.state.registry


# =============================================================================
# Response Helpers
# =============================================================================

def error_response(exc: AuthGatewayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def unauthorized(settings: Settings, message: str) -> JSONResponse:
    """401 that also drops the session cookie."""
    response = JSONResponse(status_code=401, content={"error": message})
    clear_session_cookie(response, settings)
    return response


def session_response(
    token_data: TokenData,
    expires_in: Optional[int],
    settings: Settings,
) -> JSONResponse:
    body = ExpiresInResponse(expiresIn=expires_in).model_dump(exclude_none=True)
    response = JSONResponse(content=body)
    set_session_cookie(response, token_data, settings)
    return response


def recover_code_verifier(
    request: Request,
    params: LoginParameters,
    provider_name: str,
    state_verifier: Optional[str],
    settings: Settings,
) -> str:
    """
    Find the PKCE verifier for a callback.

    Order: request body, provider PKCE cookie, ``state`` fallback (only when
    enabled). An empty string is returned when nothing is found.
    """
    if params.codeVerifier:
        return params.codeVerifier

    cookie_verifier = read_pkce_cookie(request, provider_name, settings)
    if cookie_verifier:
        return cookie_verifier

    if settings.PKCE_STATE_FALLBACK and state_verifier:
        return state_verifier

    logger.warning("No PKCE code verifier found for callback", extra={"provider": provider_name})
    return ""


# =============================================================================
# Login Endpoints
# =============================================================================

@auth_router.get("/login", response_model=RedirectResponse)
async def login_redirect(
    provider: Optional[str] = Query(None, description="Provider name; default provider when omitted"),
    settings: Settings = Depends(get_settings_dep),
    registry: ProviderRegistry = Depends(get_registry),
):
    """
    Start the authorization code flow.

    Generates a PKCE pair, stores the verifier in a short-lived cookie
    scoped to the provider and returns the IdP authorization URL.
    """
    try:
        auth_provider = await registry.resolve(provider)
        if not auth_provider.uses_code_flow:
            raise UnsupportedOperation(f"provider {auth_provider.name} does not support login redirects")

        code_verifier = generate_code_verifier()
        code_challenge = generate_code_challenge(code_verifier)
        url = await auth_provider.get_login_redirect_url(code_challenge, code_verifier)
    except AuthGatewayError as e:
        logger.warning("Failed to build login redirect", extra={"provider": provider, "error": e.message})
        return error_response(e)

    response = JSONResponse(content={"url": url})
    set_pkce_cookie(response, auth_provider.name, code_verifier, settings)
    logger.info("Login redirect issued", extra={"provider": auth_provider.name})
    return response


@auth_router.post("/login", response_model=ExpiresInResponse)
async def login(
    request: Request,
    params: LoginParameters,
    provider: Optional[str] = Query(None, description="Provider name"),
    state: Optional[str] = Query(None, description="OAuth state echoed by the IdP"),
    settings: Settings = Depends(get_settings_dep),
    registry: ProviderRegistry = Depends(get_registry),
):
    """
    Complete the authorization code flow.

    The provider comes from the ``provider`` query parameter, or from the
    ``state`` value. The PKCE cookie is cleared whatever the outcome.
    """
    state_provider, state_verifier = parse_state(state or params.state)
    provider_name = provider or state_provider

    try:
        auth_provider = await registry.resolve(provider_name)
    except AuthGatewayError as e:
        logger.warning("Login with unresolved provider", extra={"provider": provider_name, "error": e.message})
        response = error_response(e)
        if provider_name:
            clear_pkce_cookie(response, provider_name, settings)
        return response

    code_verifier = recover_code_verifier(request, params, auth_provider.name, state_verifier, settings)
    login_params = params.model_copy(update={"codeVerifier": code_verifier})

    try:
        token_data, expires_in = await auth_provider.get_token(login_params)
    except AuthGatewayError as e:
        logger.warning("Token exchange failed", extra={"provider": auth_provider.name, "error": e.message})
        response = error_response(e)
        clear_pkce_cookie(response, auth_provider.name, settings)
        return response

    token_data.provider = auth_provider.name
    response = session_response(token_data, expires_in, settings)
    clear_pkce_cookie(response, auth_provider.name, settings)
    logger.info(
        "Login completed",
        extra={"provider": auth_provider.name, "has_refresh_token": bool(token_data.refreshToken)},
    )
    return response


@auth_router.post("/login/token", response_model=ExpiresInResponse)
async def login_with_token(
    params: TokenLoginParameters,
    settings: Settings = Depends(get_settings_dep),
    registry: ProviderRegistry = Depends(get_registry),
):
    """
    Log in with a bearer token.

    Only token providers accept this; the token is validated against the
    backend API before a session is created.
    """
    if not params.token or not params.provider:
        return JSONResponse(status_code=400, content={"error": "token and provider are required"})

    try:
        auth_provider = await registry.resolve(params.provider)
    except AuthGatewayError as e:
        return error_response(e)

    if not isinstance(auth_provider, K8sTokenProvider):
        return JSONResponse(
            status_code=400,
            content={"error": f"provider {params.provider} does not support token login"},
        )

    try:
        token_data, expires_in = await auth_provider.validate_token(params.token)
    except AuthGatewayError as e:
        logger.warning("Token login rejected", extra={"provider": params.provider, "error": e.message})
        if e.status_code == 401:
            return unauthorized(settings, e.message)
        return error_response(e)

    token_data.provider = auth_provider.name
    logger.info("Token login completed", extra={"provider": auth_provider.name})
    return session_response(token_data, expires_in, settings)


# =============================================================================
# Session Endpoints
# =============================================================================

async def _session_provider(request: Request, settings: Settings, registry: ProviderRegistry):
    """
    Decode the session cookie and resolve its provider.

    Raises:
        SessionError: If there is no usable session
        AuthGatewayError: If the provider no longer resolves
    """
    token_data = parse_session_cookie(request, settings)
    if not token_data.has_token():
        raise SessionError("not authenticated")
    auth_provider = await registry.resolve(token_data.provider or None)
    return token_data, auth_provider


@auth_router.post("/refresh", response_model=ExpiresInResponse)
async def refresh(
    request: Request,
    settings: Settings = Depends(get_settings_dep),
    registry: ProviderRegistry = Depends(get_registry),
):
    """Exchange the session refresh token and replace the session cookie."""
    try:
        token_data, auth_provider = await _session_provider(request, settings, registry)
    except AuthGatewayError as e:
        return unauthorized(settings, e.message)

    try:
        new_token_data, expires_in = await auth_provider.refresh_token(token_data.refreshToken)
    except (UpstreamError, UnsupportedOperation) as e:
        logger.warning("Token refresh failed", extra={"provider": auth_provider.name, "error": e.message})
        return error_response(e)
    except AuthGatewayError as e:
        logger.warning("Token refresh rejected", extra={"provider": auth_provider.name, "error": e.message})
        response = error_response(e)
        clear_session_cookie(response, settings)
        return response

    new_token_data.provider = auth_provider.name
    return session_response(new_token_data, expires_in, settings)


@auth_router.get("/userinfo", response_model=UserInfoResponse)
async def user_info(
    request: Request,
    settings: Settings = Depends(get_settings_dep),
    registry: ProviderRegistry = Depends(get_registry),
):
    """
    Resolve the display username of the current session.

    Returns:
        ``{"username": ...}``, or 401 with the session cleared when the
        session, its provider or its token cannot be resolved.
    """
    try:
        token_data, auth_provider = await _session_provider(request, settings, registry)
        info = await auth_provider.get_user_info(token_data)
    except AuthGatewayError as e:
        logger.info("User info unavailable", extra={"error": e.message})
        return unauthorized(settings, e.message)

    if info.status_code != 200 or not info.username:
        if info.status_code == 401:
            return unauthorized(settings, "userinfo request was rejected")
        return JSONResponse(status_code=info.status_code, content={"error": "failed to get user info"})

    return UserInfoResponse(username=info.username)


@auth_router.post("/logout", response_model=RedirectResponse)
async def logout(
    request: Request,
    settings: Settings = Depends(get_settings_dep),
    registry: ProviderRegistry = Depends(get_registry),
):
    """
    Clear the session and return the IdP end-session URL, if any.

    Always 200: provider or IdP failures only cost the upstream logout.
    """
    url = ""
    try:
        token_data, auth_provider = await _session_provider(request, settings, registry)
        url = await auth_provider.logout(token_data)
    except SessionError:
        logger.debug("Logout without a session")
    except AuthGatewayError as e:
        logger.warning("Upstream logout failed, clearing local session", extra={"error": e.message})

    content: Dict[str, Any] = {"url": url} if url else {}
    response = JSONResponse(content=content)
    clear_session_cookie(response, settings)
    return response


# =============================================================================
# Provider Test Endpoint
# =============================================================================

@auth_router.post("/authproviders/{name}/test")
async def test_provider(
    name: str,
    spec: Optional[ProviderSpec] = Body(None, description="Candidate configuration; the stored one when omitted"),
    registry: ProviderRegistry = Depends(get_registry),
):
    """
    Validate a provider configuration and return the report.

    Disabled providers can be tested too.
    """
    if spec is None:
        try:
            entry = await registry.get_entry(name, include_disabled=True)
        except AuthGatewayError as e:
            return error_response(e)
        spec = entry.spec

    result = await validate_provider(spec, registry.http, provider_name=name)
    return JSONResponse(content=result.to_response())
