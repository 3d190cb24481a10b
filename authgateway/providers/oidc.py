"""
OpenID Connect provider.

Endpoints come from the issuer's discovery document. When the provider is
built with an internal URL (the default provider, with INTERNAL_AUTH_URL
set), discovery is fetched there and every endpoint the browser sees is
rewritten back to the public issuer, while token and userinfo calls keep
the internal form. Other providers always talk to their own issuer.
"""

import logging
from typing import Optional

from ..auth.claims import resolve_username
from ..auth.oauth import (
    OAuthClient,
    OAuthClientConfig,
    OpenIDConfiguration,
    add_query_params,
    fetch_openid_configuration,
    join_scopes,
    replace_base_url,
    request_userinfo,
    userinfo_json,
)
from ..errors import ProtocolError, TokenError
from ..models import ProviderType, TokenData
from .base import OAuthCodeFlowProvider, UserInfo

logger = logging.getLogger(__name__)

DEFAULT_OIDC_SCOPES = "openid profile"
DEFAULT_OIDC_USERNAME_CLAIM = ["preferred_username"]


class OIDCProvider(OAuthCodeFlowProvider):
    provider_type = ProviderType.OIDC.value

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.require(issuer=self.spec.issuer, clientId=self.spec.clientId)
        self.issuer = self.spec.issuer.rstrip("/")
        self.username_claim = self.spec.usernameClaim or DEFAULT_OIDC_USERNAME_CLAIM
        self._discovery: Optional[OpenIDConfiguration] = None

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discovery(self) -> OpenIDConfiguration:
        if self._discovery is None:
            self._discovery = await fetch_openid_configuration(self.internal_url or self.issuer, self.http)
        return self._discovery

    def external(self, endpoint: Optional[str]) -> Optional[str]:
        """Browser-facing form of a discovered endpoint."""
        if not endpoint or not self.internal_url:
            return endpoint
        return replace_base_url(endpoint, self.internal_url, self.issuer)

    async def oauth_client(self) -> OAuthClient:
        discovery = await self.discovery()
        config = OAuthClientConfig(
            client_id=self.spec.clientId,
            client_secret=self.spec.clientSecret or None,
            authorize_url=self.external(discovery.authorization_endpoint),
            token_url=discovery.token_endpoint,
            redirect_uri=self.settings.redirect_uri,
            scope=join_scopes(self.spec.scopes, DEFAULT_OIDC_SCOPES),
        )
        return OAuthClient(config, self.http)

    # =========================================================================
    # Userinfo / Logout
    # =========================================================================

    async def get_user_info(self, token_data: TokenData) -> UserInfo:
        if not token_data.accessToken:
            raise TokenError("OIDC session has no access token")

        discovery = await self.discovery()
        if not discovery.userinfo_endpoint:
            raise ProtocolError("discovery document has no userinfo_endpoint")

        response = await request_userinfo(
            discovery.userinfo_endpoint,
            token_data.accessToken,
            self.http,
            forwarded_from=self.issuer,
        )
        if response.status_code != 200:
            logger.warning(
                "Userinfo endpoint returned an error",
                extra={"provider": self.name, "status_code": response.status_code},
            )
            return UserInfo(username=None, status_code=response.status_code)

        return UserInfo(username=resolve_username(userinfo_json(response), self.username_claim))

    async def logout(self, token_data: TokenData) -> str:
        discovery = await self.discovery()
        end_session = self.external(discovery.end_session_endpoint)
        if not end_session:
            return ""
        return add_query_params(end_session, {
            "post_logout_redirect_uri": self.settings.base_ui_url_str,
            "client_id": self.spec.clientId,
        })
