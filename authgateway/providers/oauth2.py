"""
Generic OAuth2 provider for IdPs without OIDC discovery.

All endpoints and scopes are configured explicitly; there is no logout
endpoint, so logout is local only.
"""

import logging

from ..auth.claims import resolve_username
from ..auth.oauth import OAuthClient, OAuthClientConfig, request_userinfo, userinfo_json
from ..errors import ConfigError, TokenError
from ..models import ProviderType, TokenData
from .base import OAuthCodeFlowProvider, UserInfo

logger = logging.getLogger(__name__)

DEFAULT_OAUTH2_USERNAME_CLAIM = ["email"]


class OAuth2Provider(OAuthCodeFlowProvider):
    provider_type = ProviderType.OAUTH2.value

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.require(
            authorizationUrl=self.spec.authorizationUrl,
            tokenUrl=self.spec.tokenUrl,
            userinfoUrl=self.spec.userinfoUrl,
            clientId=self.spec.clientId,
        )
        if not self.spec.scopes:
            raise ConfigError(f"OAuth2 provider '{self.name}' requires scopes to be configured")
        self.username_claim = self.spec.usernameClaim or DEFAULT_OAUTH2_USERNAME_CLAIM

    async def oauth_client(self) -> OAuthClient:
        config = OAuthClientConfig(
            client_id=self.spec.clientId,
            client_secret=self.spec.clientSecret or None,
            authorize_url=self.spec.authorizationUrl,
            token_url=self.spec.tokenUrl,
            redirect_uri=self.settings.redirect_uri,
            scope=" ".join(self.spec.scopes),
        )
        return OAuthClient(config, self.http)

    async def get_user_info(self, token_data: TokenData) -> UserInfo:
        if not token_data.accessToken:
            raise TokenError("OAuth2 session has no access token")

        response = await request_userinfo(
            self.spec.userinfoUrl,
            token_data.accessToken,
            self.http,
            forwarded_from=self.spec.authorizationUrl,
        )
        if response.status_code != 200:
            logger.warning(
                "Userinfo endpoint returned an error",
                extra={"provider": self.name, "status_code": response.status_code},
            )
            return UserInfo(username=None, status_code=response.status_code)

        return UserInfo(username=resolve_username(userinfo_json(response), self.username_claim))

    async def logout(self, token_data: TokenData) -> str:
        return ""
