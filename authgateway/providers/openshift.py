"""
OpenShift OAuth server provider.

OpenShift has no userinfo endpoint: the username is read from the session
token's own claims. Logout is best-effort; when the OAuth server metadata
cannot be fetched the logout is simply local.
"""

import logging

import httpx

from ..auth.claims import resolve_username
from ..auth.oauth import OAuthClient, OAuthClientConfig, join_scopes, sanitize_url
from ..errors import TokenError
from ..models import ProviderType, TokenData
from .base import OAuthCodeFlowProvider, UserInfo

logger = logging.getLogger(__name__)

DEFAULT_OPENSHIFT_SCOPES = "user:full"
METADATA_PATH = "/.well-known/oauth-authorization-server"


class OpenShiftProvider(OAuthCodeFlowProvider):
    provider_type = ProviderType.OPENSHIFT.value

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.require(
            authUrl=self.spec.authUrl,
            tokenUrl=self.spec.tokenUrl,
            clientId=self.spec.clientId,
        )
        self.auth_url = self.spec.authUrl.rstrip("/")

    async def oauth_client(self) -> OAuthClient:
        config = OAuthClientConfig(
            client_id=self.spec.clientId,
            authorize_url=self.spec.authorizationUrl or f"{self.auth_url}/oauth/authorize",
            token_url=self.spec.tokenUrl,
            redirect_uri=self.settings.redirect_uri,
            scope=join_scopes(self.spec.scopes, DEFAULT_OPENSHIFT_SCOPES),
        )
        return OAuthClient(config, self.http)

    async def get_user_info(self, token_data: TokenData) -> UserInfo:
        token = token_data.idToken or token_data.accessToken
        if not token:
            raise TokenError("OpenShift session has no token")

        claims = self.decode_claims(token)
        return UserInfo(username=resolve_username(claims, self.spec.usernameClaim or None))

    async def logout(self, token_data: TokenData) -> str:
        metadata_url = f"{self.auth_url}{METADATA_PATH}"
        try:
            async with self.http.client() as client:
                response = await client.get(metadata_url, headers={"Accept": "application/json"})
            if response.status_code != 200:
                logger.info(
                    "OAuth server metadata unavailable, logging out locally",
                    extra={"provider": self.name, "status_code": response.status_code},
                )
                return ""
            metadata = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.info(
                "OAuth server metadata unavailable, logging out locally",
                extra={"provider": self.name, "url": sanitize_url(metadata_url), "error": str(e)},
            )
            return ""

        issuer = metadata.get("issuer") if isinstance(metadata, dict) else None
        if not isinstance(issuer, str) or not issuer:
            return ""
        return f"{issuer.rstrip('/')}/logout"
