"""
Kubernetes bearer-token provider.

Users paste a service-account (or any cluster) token; the gateway checks it
by calling the backend API with it and stores it as the session ID token.
"""

import logging
from typing import Optional

import httpx

from ..auth.claims import resolve_username, service_account_username, token_expires_in
from ..auth.oauth import sanitize_url
from ..errors import TokenError, UnsupportedOperation, UpstreamError
from ..models import LoginParameters, ProviderType, TokenData
from .base import AuthProvider, TokenResult, UserInfo

logger = logging.getLogger(__name__)

VALIDATION_PATH = "/api/v1/fleets?limit=1"


class K8sTokenProvider(AuthProvider):
    provider_type = ProviderType.K8S.value

    @property
    def uses_code_flow(self) -> bool:
        return False

    @property
    def validation_url(self) -> str:
        base = (self.spec.apiUrl or self.settings.api_url_str).rstrip("/")
        return f"{base}{VALIDATION_PATH}"

    async def validate_token(self, token: str) -> TokenResult:
        """
        Check a bearer token against the backend API.

        Any response other than 401/403 or a server error proves the token
        was accepted, including 404 from a backend without the probe path.

        Raises:
            TokenError: On 401/403, or if the token is empty
            UpstreamError: If the backend is unreachable or fails
        """
        if not token:
            raise TokenError("token is empty")

        url = self.validation_url
        try:
            async with self.http.client() as client:
                response = await client.get(url, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as e:
            logger.warning(
                "Token validation request failed",
                extra={"url": sanitize_url(url), "error": str(e)},
            )
            raise UpstreamError(f"token validation request failed: {e}") from e

        expires_in = self._expires_in(token)

        if response.status_code in (401, 403):
            if expires_in == 0:
                raise TokenError("Token has expired")
            raise TokenError("Token is invalid or unauthorized")

        if response.status_code < 200 or response.status_code >= 500:
            raise UpstreamError(f"Token validation failed (status {response.status_code})")

        logger.info("Token validated", extra={"provider": self.name, "expires_in": expires_in})
        return TokenData(idToken=token), expires_in

    def _expires_in(self, token: str) -> Optional[int]:
        try:
            return token_expires_in(self.decode_claims(token))
        except TokenError:
            return None

    async def get_token(self, params: LoginParameters) -> TokenResult:
        raise UnsupportedOperation("token auth does not use OAuth code flow")

    async def get_user_info(self, token_data: TokenData) -> UserInfo:
        token = token_data.idToken or token_data.accessToken
        if not token:
            raise TokenError("no token in session")

        claims = self.decode_claims(token)
        username = service_account_username(claims)
        if not username:
            username = resolve_username(claims, self.spec.usernameClaim or None)
        return UserInfo(username=username)

    async def refresh_token(self, refresh_token: str) -> TokenResult:
        raise UnsupportedOperation("token refresh not supported")

    async def logout(self, token_data: TokenData) -> str:
        return ""

    async def get_login_redirect_url(self, code_challenge: str, code_verifier: Optional[str] = None) -> str:
        raise UnsupportedOperation("token auth does not use a login redirect")
