"""
Identity provider variants and their registry.

One contract (``AuthProvider``), five implementations selected by the
``providerType`` of each configuration entry.
"""

from .aap import AAPProvider
from .base import AuthProvider, UserInfo
from .k8s import K8sTokenProvider
from .oauth2 import OAuth2Provider
from .oidc import OIDCProvider
from .openshift import OpenShiftProvider
from .registry import (
    ApiConfigSource,
    FileConfigSource,
    ProviderRegistry,
    StaticConfigSource,
)
from .validation import validate_provider

__all__ = [
    "AuthProvider",
    "UserInfo",
    "K8sTokenProvider",
    "OIDCProvider",
    "OAuth2Provider",
    "AAPProvider",
    "OpenShiftProvider",
    "ProviderRegistry",
    "ApiConfigSource",
    "FileConfigSource",
    "StaticConfigSource",
    "validate_provider",
]
