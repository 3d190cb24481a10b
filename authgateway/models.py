"""
Data Models Module

This module defines Pydantic models for request/response validation
and data serialization throughout the gateway.

Models are organized by functional area:
- Session models (the token payload carried in the session cookie)
- Request/response bodies of the auth endpoints
- Provider configuration (discriminated by providerType)
- Provider validation report
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Session Models
# ============================================================================

class TokenData(BaseModel):
    """
    Session payload serialized into the session cookie.

    ``idToken`` carries the JWT used by OIDC/K8s/OpenShift for API calls,
    ``accessToken`` the opaque token used by OAuth2/AAP and OIDC userinfo.
    """

    idToken: str = Field(default="", description="JWT identity token")
    accessToken: str = Field(default="", description="Opaque access token")
    refreshToken: str = Field(default="", description="Refresh token if issued")
    provider: str = Field(default="", description="Name of the provider that issued the tokens")

    def get_auth_token(self) -> str:
        """Token to present to the backend API: the ID token when available."""
        return self.idToken or self.accessToken

    def has_token(self) -> bool:
        return bool(self.idToken or self.accessToken)


# ============================================================================
# Auth Endpoint Models
# ============================================================================

class LoginParameters(BaseModel):
    """Body of ``POST /login`` (authorization code callback)."""
    code: str = Field(..., description="Authorization code returned by the IdP", min_length=1)
    codeVerifier: Optional[str] = Field(None, description="PKCE code verifier")
    state: Optional[str] = Field(None, description="OAuth state echoed back by the IdP")


class TokenLoginParameters(BaseModel):
    """Body of ``POST /login/token`` (direct bearer-token login)."""
    token: str = Field(default="", description="Bearer token to validate")
    provider: str = Field(default="", description="Name of a token provider")


class ExpiresInResponse(BaseModel):
    expiresIn: Optional[int] = Field(None, description="Seconds until the session token expires")


class RedirectResponse(BaseModel):
    url: Optional[str] = Field(None, description="Browser redirect target")


class UserInfoResponse(BaseModel):
    username: str = Field(..., description="Display username")


# ============================================================================
# Provider Configuration
# ============================================================================

class ProviderType(str, Enum):
    K8S = "k8s"
    OIDC = "oidc"
    OAUTH2 = "oauth2"
    AAP = "aap"
    OPENSHIFT = "openshift"


class OrganizationAssignment(BaseModel):
    """How users authenticated through a provider are mapped to organizations."""
    type: str = Field(..., description="Static, Dynamic or PerUser")
    organizationName: Optional[str] = None
    claimPath: Optional[str] = None
    organizationNamePrefix: Optional[str] = None
    organizationNameSuffix: Optional[str] = None


class ProviderSpec(BaseModel):
    """
    Provider configuration as served by the config source.

    Which fields are required depends on ``providerType``; the registry
    and the validator enforce that, not this model.
    """

    providerType: str = Field(..., description="k8s, oidc, oauth2, aap or openshift")
    clientId: str = Field(default="")
    clientSecret: Optional[str] = None
    enabled: bool = True
    issuer: Optional[str] = None
    authorizationUrl: Optional[str] = None
    tokenUrl: Optional[str] = None
    userinfoUrl: Optional[str] = None
    authUrl: Optional[str] = Field(None, description="AAP/OpenShift base URL")
    apiUrl: Optional[str] = Field(None, description="K8s API URL used for token validation")
    externalOpenShiftApiUrl: Optional[str] = Field(
        None,
        description="Externally reachable OpenShift API URL; marks a k8s provider as OpenShift OAuth",
    )
    scopes: List[str] = Field(default_factory=list)
    usernameClaim: List[str] = Field(default_factory=list, description="Claim path segments")
    roleClaim: Optional[str] = None
    organizationAssignment: Optional[OrganizationAssignment] = None

    @field_validator("providerType")
    @classmethod
    def normalize_type(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("scopes", mode="before")
    @classmethod
    def split_scopes(cls, v: Union[str, List[str], None]) -> List[str]:
        """Accept either a list or a space-separated scope string."""
        if v is None:
            return []
        if isinstance(v, str):
            return v.split()
        return v

    @field_validator("usernameClaim", mode="before")
    @classmethod
    def split_claim_path(cls, v: Union[str, List[str], None]) -> List[str]:
        """Accept either a list of segments or a ``|``-separated string."""
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return v.split("|")
        return v


class ProviderMetadata(BaseModel):
    name: str = Field(..., min_length=1)
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None


class ProviderEntry(BaseModel):
    """One entry of the provider list."""
    metadata: ProviderMetadata
    spec: ProviderSpec

    @property
    def name(self) -> str:
        return self.metadata.name


class AuthConfig(BaseModel):
    """Response of the backend ``/api/v1/auth/config`` endpoint."""
    providers: List[ProviderEntry] = Field(default_factory=list)
    defaultProvider: Optional[str] = None
    organizationsEnabled: Optional[bool] = None


# ============================================================================
# Provider Validation Report
# ============================================================================

class ValidationLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationNote(BaseModel):
    level: ValidationLevel
    text: str


class FieldValidation(BaseModel):
    valid: bool = False
    value: Optional[str] = None
    notes: List[ValidationNote] = Field(default_factory=list)

    def add_error(self, text: str) -> None:
        self.valid = False
        self.notes.append(ValidationNote(level=ValidationLevel.ERROR, text=text))

    def add_warning(self, text: str) -> None:
        self.notes.append(ValidationNote(level=ValidationLevel.WARNING, text=text))

    def add_info(self, text: str) -> None:
        self.notes.append(ValidationNote(level=ValidationLevel.INFO, text=text))

    @property
    def is_set(self) -> bool:
        return bool(self.value) or bool(self.notes)


class OidcDiscoveryValidation(BaseModel):
    reachable: bool = False
    discoveryUrl: FieldValidation = Field(default_factory=FieldValidation)
    authorizationEndpoint: FieldValidation = Field(default_factory=FieldValidation)
    tokenEndpoint: FieldValidation = Field(default_factory=FieldValidation)
    userInfoEndpoint: FieldValidation = Field(default_factory=FieldValidation)
    endSessionEndpoint: Optional[FieldValidation] = None
    supportedScopes: List[str] = Field(default_factory=list)
    supportedGrantTypes: List[str] = Field(default_factory=list)


class OAuth2SettingsValidation(BaseModel):
    valid: bool = True
    authorizationEndpoint: FieldValidation = Field(default_factory=FieldValidation)
    tokenEndpoint: FieldValidation = Field(default_factory=FieldValidation)
    userInfoEndpoint: FieldValidation = Field(default_factory=FieldValidation)
    scopes: FieldValidation = Field(default_factory=FieldValidation)


class OrgAssignmentValidation(BaseModel):
    valid: bool = True
    type: FieldValidation = Field(default_factory=FieldValidation)
    organizationName: Optional[FieldValidation] = None
    claimPath: Optional[FieldValidation] = None
    organizationNamePrefix: Optional[FieldValidation] = None
    organizationNameSuffix: Optional[FieldValidation] = None


class ValidationSummary(BaseModel):
    totalFields: int = 0
    validFields: int = 0
    errorFields: int = 0
    warningFields: int = 0
    providerName: Optional[str] = None
    nextSteps: List[str] = Field(default_factory=list)


class ProviderValidationResult(BaseModel):
    """Report produced by ``POST /authproviders/{name}/test``."""
    valid: bool = True
    providerType: FieldValidation = Field(default_factory=FieldValidation)
    clientId: FieldValidation = Field(default_factory=FieldValidation)
    issuer: Optional[FieldValidation] = None
    authUrl: Optional[FieldValidation] = None
    tokenUrl: Optional[FieldValidation] = None
    oidcDiscovery: Optional[OidcDiscoveryValidation] = None
    oauth2Settings: Optional[OAuth2SettingsValidation] = None
    usernameClaim: FieldValidation = Field(default_factory=FieldValidation)
    organizationAssignment: Optional[OrgAssignmentValidation] = None
    summary: ValidationSummary = Field(default_factory=ValidationSummary)

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
