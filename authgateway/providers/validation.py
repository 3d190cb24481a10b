"""
Provider configuration validator.

Checks a provider configuration before it is trusted and returns a
structured report. Nothing here raises: every problem becomes a note on the
field it concerns, and the summary counts them.

Per type:
    oidc      - issuer present, discovery document reachable and complete
    oauth2    - endpoints probed (GET authorize, POST token, GET userinfo);
                404/405 is a configuration error, unreachable or 5xx a warning
    aap       - authUrl present
    openshift - authUrl and tokenUrl present
    k8s       - no required fields
"""

import logging
from typing import List, Optional

import httpx

from ..auth.oauth import HttpOptions, discovery_url, fetch_discovery_document
from ..errors import AuthGatewayError
from ..models import (
    FieldValidation,
    OAuth2SettingsValidation,
    OidcDiscoveryValidation,
    OrgAssignmentValidation,
    ProviderSpec,
    ProviderType,
    ProviderValidationResult,
    ValidationLevel,
    ValidationSummary,
)

logger = logging.getLogger(__name__)

VALIDATION_BEARER_TOKEN = "test-token-for-validation"
ORG_TYPES_WITH_CLAIM = ("Dynamic", "PerUser")
ORG_TYPE_STATIC = "Static"


def _field(value: Optional[str]) -> FieldValidation:
    return FieldValidation(valid=True, value=value)


# =============================================================================
# Entry Point
# =============================================================================

async def validate_provider(
    spec: ProviderSpec,
    http: HttpOptions,
    provider_name: Optional[str] = None,
) -> ProviderValidationResult:
    """
    Validate a provider configuration.

    Args:
        spec: Provider configuration to check
        http: Client options for discovery and endpoint probes
        provider_name: Name reported in the summary

    Returns:
        The validation report; ``valid`` is False if any field has an error.
    """
    result = ProviderValidationResult()

    _validate_type(spec, result)
    _validate_common_fields(spec, result)

    if spec.providerType == ProviderType.OIDC.value:
        await _validate_oidc(spec, http, result)
    elif spec.providerType == ProviderType.OAUTH2.value:
        await _validate_oauth2(spec, http, result)
    elif spec.providerType in (ProviderType.AAP.value, ProviderType.OPENSHIFT.value):
        _validate_auth_url_provider(spec, result)

    _validate_organization_assignment(spec, result)

    result.summary = build_summary(result, provider_name)
    logger.info(
        "Provider configuration validated",
        extra={
            "provider": provider_name,
            "valid": result.valid,
            "error_fields": result.summary.errorFields,
            "warning_fields": result.summary.warningFields,
        },
    )
    return result


# =============================================================================
# Common Fields
# =============================================================================

def _validate_type(spec: ProviderSpec, result: ProviderValidationResult) -> None:
    result.providerType = _field(spec.providerType)
    known = [t.value for t in ProviderType]
    if spec.providerType not in known:
        result.providerType.add_error(
            f"Unknown provider type '{spec.providerType}'; expected one of {', '.join(known)}"
        )
        result.valid = False
    elif spec.providerType in (ProviderType.AAP.value, ProviderType.OPENSHIFT.value, ProviderType.K8S.value):
        result.providerType.add_info(
            f"Connectivity is not probed for {spec.providerType} providers; only required fields are checked"
        )


def _validate_common_fields(spec: ProviderSpec, result: ProviderValidationResult) -> None:
    result.clientId = _field(spec.clientId)
    if not spec.clientId and spec.providerType != ProviderType.K8S.value:
        result.clientId.add_error("Client ID is required")
        result.valid = False

    if spec.usernameClaim:
        result.usernameClaim = _field("|".join(spec.usernameClaim))
        if any(not segment.strip() for segment in spec.usernameClaim):
            result.usernameClaim.add_error("Username claim path contains an empty segment")
            result.valid = False
    else:
        result.usernameClaim = FieldValidation(valid=True)
        result.usernameClaim.add_info("No username claim configured; the provider default is used")


def _validate_auth_url_provider(spec: ProviderSpec, result: ProviderValidationResult) -> None:
    result.authUrl = _field(spec.authUrl)
    if not spec.authUrl:
        result.authUrl.add_error(f"{spec.providerType} provider requires authUrl")
        result.valid = False

    if spec.providerType == ProviderType.OPENSHIFT.value:
        result.tokenUrl = _field(spec.tokenUrl)
        if not spec.tokenUrl:
            result.tokenUrl.add_error("openshift provider requires tokenUrl")
            result.valid = False


# =============================================================================
# OIDC
# =============================================================================

async def _validate_oidc(spec: ProviderSpec, http: HttpOptions, result: ProviderValidationResult) -> None:
    issuer = _field(spec.issuer)
    result.issuer = issuer

    if not spec.issuer:
        issuer.add_error("OIDC provider requires an issuer URL")
        result.valid = False
        return

    url = discovery_url(spec.issuer)
    try:
        document = await fetch_discovery_document(url, http)
    except AuthGatewayError as e:
        issuer.add_error(f"Failed to fetch OIDC discovery document: {e.message}")
        result.valid = False
        unavailable = "Could not retrieve endpoint from discovery"
        discovery = OidcDiscoveryValidation(reachable=False, discoveryUrl=FieldValidation(value=url))
        discovery.discoveryUrl.add_error(e.message)
        discovery.authorizationEndpoint.add_error(unavailable)
        discovery.tokenEndpoint.add_error(unavailable)
        discovery.userInfoEndpoint.add_error(unavailable)
        result.oidcDiscovery = discovery
        return

    discovery = OidcDiscoveryValidation(reachable=True, discoveryUrl=_field(url))
    missing = False
    for attr, key in (
        ("authorizationEndpoint", "authorization_endpoint"),
        ("tokenEndpoint", "token_endpoint"),
        ("userInfoEndpoint", "userinfo_endpoint"),
    ):
        value = document.get(key)
        if isinstance(value, str) and value:
            setattr(discovery, attr, _field(value))
        else:
            field = FieldValidation()
            field.add_error(f"{key} missing from discovery document")
            setattr(discovery, attr, field)
            missing = True

    end_session = document.get("end_session_endpoint")
    if isinstance(end_session, str) and end_session:
        discovery.endSessionEndpoint = _field(end_session)

    if missing:
        result.valid = False
        discovery.discoveryUrl.add_warning("Discovery document is missing required fields")

    discovery.supportedScopes = _string_list(document.get("scopes_supported"))
    discovery.supportedGrantTypes = _string_list(document.get("grant_types_supported"))
    result.oidcDiscovery = discovery


def _string_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


# =============================================================================
# OAuth2
# =============================================================================

async def _validate_oauth2(spec: ProviderSpec, http: HttpOptions, result: ProviderValidationResult) -> None:
    settings = OAuth2SettingsValidation()
    result.oauth2Settings = settings

    async with http.client() as client:
        if spec.authorizationUrl:
            settings.authorizationEndpoint = await _probe_authorization(client, spec.authorizationUrl)
        else:
            settings.authorizationEndpoint.add_error("Authorization endpoint is required for OAuth2 providers")

        if spec.tokenUrl:
            settings.tokenEndpoint = await _probe_token(client, spec.tokenUrl)
        else:
            settings.tokenEndpoint.add_error("Token endpoint is required for OAuth2 providers")

        if spec.userinfoUrl:
            settings.userInfoEndpoint = await _probe_userinfo(client, spec.userinfoUrl)
        else:
            settings.userInfoEndpoint.add_error("UserInfo endpoint is required for OAuth2 providers")

    if spec.scopes:
        settings.scopes = _field(" ".join(spec.scopes))
    else:
        settings.scopes.add_error("OAuth2 provider requires scopes to be configured")

    fields = (
        settings.authorizationEndpoint,
        settings.tokenEndpoint,
        settings.userInfoEndpoint,
        settings.scopes,
    )
    if not all(f.valid for f in fields):
        settings.valid = False
        result.valid = False


async def _send(field: FieldValidation, label: str, request) -> Optional[httpx.Response]:
    """Run a probe; connection failures become a warning on ``field``."""
    try:
        return await request
    except httpx.HTTPError as e:
        field.add_warning(f"{label} not reachable: {e}")
        return None


def _server_error(field: FieldValidation, label: str, response: httpx.Response) -> bool:
    if response.status_code >= 500:
        field.add_warning(f"{label} returned server error {response.status_code}")
        return True
    return False


async def _probe_authorization(client: httpx.AsyncClient, url: str) -> FieldValidation:
    label = "Authorization endpoint"
    field = _field(url)
    response = await _send(field, label, client.get(url))
    if response is None or _server_error(field, label, response):
        return field
    if response.status_code in (404, 405):
        field.add_error(f"{label} returned HTTP {response.status_code}")
    else:
        field.add_info(f"{label} is reachable")
    return field


async def _probe_token(client: httpx.AsyncClient, url: str) -> FieldValidation:
    label = "Token endpoint"
    field = _field(url)
    request = client.post(url, content=b"", headers={"Content-Type": "application/x-www-form-urlencoded"})
    response = await _send(field, label, request)
    if response is None or _server_error(field, label, response):
        return field
    if response.status_code == 405:
        field.add_error(f"{label} does not accept POST method")
    elif response.status_code == 404:
        field.add_error(f"{label} not found (404)")
    else:
        field.add_info(f"{label} is reachable and accepts POST method")
    return field


async def _probe_userinfo(client: httpx.AsyncClient, url: str) -> FieldValidation:
    label = "User info endpoint"
    field = _field(url)
    request = client.get(url, headers={"Authorization": f"Bearer {VALIDATION_BEARER_TOKEN}"})
    response = await _send(field, label, request)
    if response is None or _server_error(field, label, response):
        return field

    content_type = response.headers.get("content-type", "")
    if response.status_code == 404:
        field.add_error(f"{label} not found (404)")
    elif response.status_code == 405:
        field.add_error(f"{label} does not accept GET method")
    elif response.status_code == 200 and "application/json" not in content_type:
        field.add_error(f"{label} does not return JSON (got {content_type or 'no content type'})")
    else:
        field.add_info(f"{label} is reachable")
    return field


# =============================================================================
# Organization Assignment
# =============================================================================

def _validate_organization_assignment(spec: ProviderSpec, result: ProviderValidationResult) -> None:
    assignment = spec.organizationAssignment
    if assignment is None:
        return

    org = OrgAssignmentValidation(type=_field(assignment.type))

    if assignment.type in ORG_TYPES_WITH_CLAIM:
        if assignment.claimPath:
            org.claimPath = _field(assignment.claimPath)
            if spec.providerType == ProviderType.OAUTH2.value and spec.scopes:
                org.claimPath.add_warning(
                    f"Ensure scopes '{' '.join(spec.scopes)}' include permissions to access "
                    "organization data from the provider"
                )
            elif spec.providerType == ProviderType.OIDC.value:
                org.claimPath.add_warning(
                    "Ensure the OIDC provider includes organization/group information at "
                    f"claim path '{assignment.claimPath}'"
                )
        else:
            org.claimPath = FieldValidation()
            org.claimPath.add_error(
                f"Organization assignment type '{assignment.type}' requires claimPath to be configured"
            )
    elif assignment.type == ORG_TYPE_STATIC:
        if assignment.organizationName:
            org.organizationName = _field(assignment.organizationName)
        else:
            org.organizationName = FieldValidation()
            org.organizationName.add_error("Static organization assignment requires organizationName")
    else:
        org.type.add_error(
            f"Unknown organization assignment type '{assignment.type}'; expected Static, Dynamic or PerUser"
        )

    if assignment.organizationNamePrefix:
        org.organizationNamePrefix = _field(assignment.organizationNamePrefix)
    if assignment.organizationNameSuffix:
        org.organizationNameSuffix = _field(assignment.organizationNameSuffix)

    checked = [org.type, org.claimPath, org.organizationName]
    if any(f is not None and not f.valid for f in checked):
        org.valid = False
        result.valid = False

    result.organizationAssignment = org


# =============================================================================
# Summary
# =============================================================================

def _counted_fields(result: ProviderValidationResult) -> List[FieldValidation]:
    fields = [result.providerType, result.clientId]

    if result.usernameClaim.value:
        fields.append(result.usernameClaim)
    for optional in (result.issuer, result.authUrl, result.tokenUrl):
        if optional is not None:
            fields.append(optional)

    if result.oidcDiscovery is not None:
        fields.extend([
            result.oidcDiscovery.discoveryUrl,
            result.oidcDiscovery.authorizationEndpoint,
            result.oidcDiscovery.tokenEndpoint,
            result.oidcDiscovery.userInfoEndpoint,
        ])

    if result.oauth2Settings is not None:
        fields.extend([
            result.oauth2Settings.authorizationEndpoint,
            result.oauth2Settings.tokenEndpoint,
            result.oauth2Settings.userInfoEndpoint,
            result.oauth2Settings.scopes,
        ])

    org = result.organizationAssignment
    if org is not None:
        fields.append(org.type)
        for optional in (org.claimPath, org.organizationName):
            if optional is not None and optional.is_set:
                fields.append(optional)

    return fields


def build_summary(result: ProviderValidationResult, provider_name: Optional[str] = None) -> ValidationSummary:
    """
    Count fields and derive next steps.

    A field counts as an error when invalid; every warning note adds one to
    ``warningFields``.
    """
    summary = ValidationSummary(providerName=provider_name)

    for field in _counted_fields(result):
        summary.totalFields += 1
        if field.valid:
            summary.validFields += 1
        else:
            summary.errorFields += 1
        summary.warningFields += sum(1 for note in field.notes if note.level == ValidationLevel.WARNING)

    if result.valid:
        if summary.warningFields > 0:
            summary.nextSteps.append("Configuration is valid but has warnings")
        else:
            summary.nextSteps.append("✓ All validations passed")
            summary.nextSteps.append("✓ Configuration is ready to use")
    else:
        summary.nextSteps.append(f"Fix {summary.errorFields} required field(s) marked with errors")

    return summary
