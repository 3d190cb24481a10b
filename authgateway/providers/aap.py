"""
Ansible Automation Platform gateway provider.

AAP speaks OAuth2 under ``/o/`` but answers token requests with
``201 Created``; the token client runs over a transport that reports those
responses as ``200 OK``.
"""

import logging

import httpx

from ..auth.oauth import OAuthClient, OAuthClientConfig, join_scopes, sanitize_url, userinfo_json, request_userinfo
from ..errors import ProtocolError, TokenError
from ..models import ProviderType, TokenData
from .base import OAuthCodeFlowProvider, UserInfo

logger = logging.getLogger(__name__)

DEFAULT_AAP_SCOPES = "read"


class CreatedAsOkTransport(httpx.AsyncBaseTransport):
    """Wraps a transport and rewrites ``201`` responses to ``200``."""

    def __init__(self, wrapped: httpx.AsyncBaseTransport):
        self._wrapped = wrapped

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await self._wrapped.handle_async_request(request)
        if response.status_code != 201:
            return response
        return httpx.Response(
            200,
            headers=response.headers,
            stream=response.stream,
            extensions=response.extensions,
            request=request,
        )

    async def aclose(self) -> None:
        await self._wrapped.aclose()


class AAPProvider(OAuthCodeFlowProvider):
    provider_type = ProviderType.AAP.value

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.require(authUrl=self.spec.authUrl, clientId=self.spec.clientId)
        self.auth_url = self.spec.authUrl.rstrip("/")
        self.internal_url = self.internal_url or self.auth_url

    async def oauth_client(self) -> OAuthClient:
        config = OAuthClientConfig(
            client_id=self.spec.clientId,
            client_secret=self.spec.clientSecret or None,
            authorize_url=f"{self.auth_url}/o/authorize/",
            token_url=f"{self.internal_url}/o/token/",
            redirect_uri=self.settings.redirect_uri,
            scope=join_scopes(self.spec.scopes, DEFAULT_AAP_SCOPES),
        )
        return OAuthClient(config, self.http, token_transport=CreatedAsOkTransport(self.http.base_transport()))

    async def get_user_info(self, token_data: TokenData) -> UserInfo:
        """
        Resolve the username from the gateway ``me`` endpoint.

        The response wraps users in ``results``; the first entry's
        ``username`` is used.

        Raises:
            TokenError: If the session has no access token
            ProtocolError: If ``results`` is empty or carries no username
        """
        if not token_data.accessToken:
            raise TokenError("AAP session has no access token")

        response = await request_userinfo(
            f"{self.internal_url}/api/gateway/v1/me/",
            token_data.accessToken,
            self.http,
        )
        if response.status_code != 200:
            logger.warning(
                "AAP user endpoint returned an error",
                extra={"provider": self.name, "status_code": response.status_code},
            )
            return UserInfo(username=None, status_code=response.status_code)

        results = userinfo_json(response).get("results")
        if not isinstance(results, list) or not results:
            raise ProtocolError("AAP user endpoint returned no results")

        first = results[0]
        username = first.get("username") if isinstance(first, dict) else None
        if not isinstance(username, str) or not username:
            raise ProtocolError("AAP user entry has no username")
        return UserInfo(username=username)

    async def logout(self, token_data: TokenData) -> str:
        """
        Revoke the access token at the gateway.

        Revocation failures are logged and otherwise ignored; the local
        session is cleared either way.
        """
        if not token_data.accessToken:
            return ""

        revoke_url = f"{self.internal_url}/o/revoke_token/"
        try:
            async with self.http.client() as client:
                response = await client.post(
                    revoke_url,
                    data={"client_id": self.spec.clientId, "token": token_data.accessToken},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as e:
            logger.warning(
                "Token revocation failed",
                extra={"provider": self.name, "url": sanitize_url(revoke_url), "error": str(e)},
            )
            return ""

        if not response.is_success:
            logger.warning(
                "Token revocation rejected",
                extra={"provider": self.name, "status_code": response.status_code},
            )
        return ""
