"""
Provider contract shared by every identity provider variant.

A provider instance lives for one request: the registry builds it from the
current configuration and drops it afterwards, so instances may cache
per-request data such as a discovery document.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..auth.claims import decode_jwt_claims
from ..auth.oauth import HttpOptions, OAuthClient, encode_state
from ..config import Settings
from ..errors import ConfigError
from ..models import LoginParameters, ProviderSpec, TokenData


@dataclass
class UserInfo:
    """Result of a userinfo lookup; ``username`` is None unless status is 200."""

    username: Optional[str]
    status_code: int = 200


TokenResult = Tuple[TokenData, Optional[int]]


class AuthProvider(ABC):
    """
    Abstract base class for identity provider variants.

    Args:
        name: Provider name from the configuration entry
        spec: Provider configuration
        settings: Application settings
        http: Upstream HTTP options
        internal_url: Cluster-local URL of this provider's IdP, for
            server-to-server calls. Only the default provider gets one.
    """

    provider_type: str = ""

    def __init__(
        self,
        name: str,
        spec: ProviderSpec,
        settings: Settings,
        http: HttpOptions,
        internal_url: Optional[str] = None,
    ):
        self.name = name
        self.spec = spec
        self.settings = settings
        self.http = http
        self.internal_url = internal_url

    # =========================================================================
    # Contract
    # =========================================================================

    @property
    def uses_code_flow(self) -> bool:
        return True

    @abstractmethod
    async def get_token(self, params: LoginParameters) -> TokenResult:
        """
        Exchange an authorization code for tokens.

        Raises:
            ProtocolError: On a non-success token response
            UpstreamError: If the IdP cannot be reached
        """

    @abstractmethod
    async def get_user_info(self, token_data: TokenData) -> UserInfo:
        """
        Resolve the display username for a session.

        Raises:
            TokenError: If the token this variant needs is absent
        """

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> TokenResult:
        pass

    @abstractmethod
    async def logout(self, token_data: TokenData) -> str:
        """Return an IdP end-session URL, or "" for a local-only logout."""

    @abstractmethod
    async def get_login_redirect_url(self, code_challenge: str, code_verifier: Optional[str] = None) -> str:
        pass

    # =========================================================================
    # Helpers
    # =========================================================================

    def require(self, **fields: Optional[str]) -> None:
        """
        Check that required configuration values are present.

        Raises:
            ConfigError: Naming every missing field
        """
        missing = [key for key, value in fields.items() if not value]
        if missing:
            raise ConfigError(
                f"Missing configuration for {self.provider_type} provider '{self.name}': {', '.join(missing)}"
            )

    def state_for(self, code_verifier: Optional[str]) -> str:
        if self.settings.PKCE_STATE_FALLBACK:
            return encode_state(self.name, code_verifier)
        return encode_state(self.name)

    def decode_claims(self, token: str) -> Dict[str, Any]:
        """Claims of a JWT, signature-checked only when a key is configured."""
        return decode_jwt_claims(
            token,
            verify_key=self.settings.JWT_VERIFY_PUBLIC_KEY,
            algorithms=self.settings.jwt_algorithms_list,
        )


class OAuthCodeFlowProvider(AuthProvider):
    """Base for variants that delegate the code flow to an OAuthClient."""

    async def oauth_client(self) -> OAuthClient:
        raise NotImplementedError

    async def get_token(self, params: LoginParameters) -> TokenResult:
        client = await self.oauth_client()
        return await client.exchange_code(params.code, params.codeVerifier)

    async def refresh_token(self, refresh_token: str) -> TokenResult:
        client = await self.oauth_client()
        return await client.refresh(refresh_token)

    async def get_login_redirect_url(self, code_challenge: str, code_verifier: Optional[str] = None) -> str:
        client = await self.oauth_client()
        return client.authorization_url(self.state_for(code_verifier), code_challenge)
