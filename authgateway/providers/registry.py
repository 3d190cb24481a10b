"""
Provider Registry
=================

Resolves a provider name to a live provider instance.

The provider list is fetched from its source on EVERY resolution and
instances are never cached, so configuration changes (including disabling
or deleting a provider) apply to the very next request.

Sources:
    - ApiConfigSource:    GET {API_URL}/api/v1/auth/config (418 = auth disabled)
    - FileConfigSource:   JSON file named by AUTH_PROVIDERS_FILE
    - StaticConfigSource: an in-memory AuthConfig
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, Type

import httpx
from pydantic import ValidationError

from ..auth.oauth import HttpOptions
from ..config import Settings, mask_secret
from ..errors import AuthDisabled, ConfigError, ProviderNotFound, UpstreamError
from ..models import AuthConfig, ProviderEntry, ProviderType
from .aap import AAPProvider
from .base import AuthProvider
from .k8s import K8sTokenProvider
from .oauth2 import OAuth2Provider
from .oidc import OIDCProvider
from .openshift import OpenShiftProvider

logger = logging.getLogger(__name__)

AUTH_CONFIG_PATH = "/api/v1/auth/config"

PROVIDER_CLASSES: Dict[str, Type[AuthProvider]] = {
    ProviderType.K8S.value: K8sTokenProvider,
    ProviderType.OIDC.value: OIDCProvider,
    ProviderType.OAUTH2.value: OAuth2Provider,
    ProviderType.AAP.value: AAPProvider,
    ProviderType.OPENSHIFT.value: OpenShiftProvider,
}


# =============================================================================
# Config Sources
# =============================================================================

class ProviderConfigSource(ABC):
    """Read-only source of the provider list."""

    @abstractmethod
    async def load(self) -> AuthConfig:
        pass


def _parse_auth_config(data: Any) -> AuthConfig:
    if isinstance(data, list):
        data = {"providers": data}
    try:
        return AuthConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"malformed provider configuration: {e.error_count()} error(s)") from e


class ApiConfigSource(ProviderConfigSource):
    """Provider list served by the backend API."""

    def __init__(self, settings: Settings, http: HttpOptions):
        self.url = f"{settings.api_url_str}{AUTH_CONFIG_PATH}"
        self.http = http

    async def load(self) -> AuthConfig:
        try:
            async with self.http.client() as client:
                response = await client.get(self.url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            logger.warning("Failed to get auth config", extra={"error": str(e)})
            raise UpstreamError(f"failed to get auth config: {e}") from e

        if response.status_code == 418:
            raise AuthDisabled("authentication is disabled")
        if response.status_code != 200:
            raise UpstreamError(f"auth config request returned status {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ConfigError("auth config response is not JSON") from e
        return _parse_auth_config(data)


class FileConfigSource(ProviderConfigSource):
    """Provider list read from a JSON file; re-read on every load."""

    def __init__(self, path: str):
        self.path = path

    async def load(self) -> AuthConfig:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise ConfigError(f"cannot read provider file {self.path}: {e}") from e
        except ValueError as e:
            raise ConfigError(f"provider file {self.path} is not valid JSON: {e}") from e
        return _parse_auth_config(data)


class StaticConfigSource(ProviderConfigSource):
    def __init__(self, config: AuthConfig):
        self.config = config

    async def load(self) -> AuthConfig:
        return self.config


def build_config_source(settings: Settings, http: HttpOptions) -> ProviderConfigSource:
    if settings.AUTH_PROVIDERS_FILE:
        return FileConfigSource(settings.AUTH_PROVIDERS_FILE)
    return ApiConfigSource(settings, http)


# =============================================================================
# Registry
# =============================================================================

class ProviderRegistry:
    """
    Name -> provider resolution over a config source.

    Args:
        settings: Application settings handed to every provider
        source: Where the provider list comes from
        transport: Optional httpx transport for all upstream calls (tests)
    """

    def __init__(
        self,
        settings: Settings,
        source: Optional[ProviderConfigSource] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.http = HttpOptions.from_settings(settings, transport=transport)
        self.source = source or build_config_source(settings, self.http)

    async def _lookup(self, name: Optional[str], include_disabled: bool) -> Tuple[ProviderEntry, AuthConfig]:
        config = await self.source.load()

        if not name:
            name = config.defaultProvider
            if not name:
                raise ProviderNotFound("no provider requested and no default provider configured")

        for entry in config.providers:
            if entry.name == name:
                if not entry.spec.enabled and not include_disabled:
                    raise ProviderNotFound(f"provider {name} is disabled")
                return entry, config

        raise ProviderNotFound(f"provider {name} not found")

    async def get_entry(self, name: Optional[str], include_disabled: bool = False) -> ProviderEntry:
        """
        Fetch the current configuration entry for a provider.

        An empty name selects the configured default provider.

        Raises:
            ProviderNotFound: If no enabled provider has that exact name
            AuthDisabled: If the backend reports auth as disabled
        """
        entry, _ = await self._lookup(name, include_disabled)
        return entry

    def build(self, entry: ProviderEntry, internal_url: Optional[str] = None) -> AuthProvider:
        """
        Construct the variant for a configuration entry.

        A k8s entry whose external OpenShift API URL differs from its API URL
        is served by the OpenShift OAuth variant; otherwise it is plain
        bearer-token auth.

        Raises:
            ConfigError: On an unknown type or missing required fields
        """
        spec = entry.spec
        provider_type = spec.providerType

        if (
            provider_type == ProviderType.K8S.value
            and spec.externalOpenShiftApiUrl
            and spec.externalOpenShiftApiUrl.rstrip("/") != (spec.apiUrl or "").rstrip("/")
        ):
            provider_type = ProviderType.OPENSHIFT.value

        provider_class = PROVIDER_CLASSES.get(provider_type)
        if provider_class is None:
            raise ConfigError(f"unknown provider type '{spec.providerType}' for provider {entry.name}")

        provider = provider_class(entry.name, spec, self.settings, self.http, internal_url=internal_url)
        logger.info(
            "Authentication provider initialized",
            extra={
                "provider": entry.name,
                "provider_type": provider_type,
                "client_id": spec.clientId,
                "client_secret": mask_secret(spec.clientSecret),
                "internal_url": bool(internal_url),
            },
        )
        return provider

    async def resolve(self, name: Optional[str]) -> AuthProvider:
        """
        Fetch configuration and build the provider in one step.

        INTERNAL_AUTH_URL is the cluster-local address of the default
        provider's IdP, so only the default provider is built with it.
        """
        entry, config = await self._lookup(name, include_disabled=False)
        internal_url = self.settings.INTERNAL_AUTH_URL if entry.name == config.defaultProvider else None
        return self.build(entry, internal_url=internal_url)
