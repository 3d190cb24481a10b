"""
Unit Tests for the Provider Configuration Validator
===================================================

Tests for authgateway/providers/validation.py

Test Coverage:
--------------
1. OIDC discovery checks
2. OAuth2 endpoint probes (404/405 errors, unreachable warnings)
3. Required fields for AAP / OpenShift / K8s
4. Organization assignment rules
5. Summary counts and next steps
"""

import httpx
import pytest

from authgateway.models import (
    FieldValidation,
    ProviderSpec,
    ProviderValidationResult,
    ValidationLevel,
)
from authgateway.providers.validation import build_summary, validate_provider

from .conftest import ISSUER, OAUTH2_BASE


def note_texts(field: FieldValidation, level: ValidationLevel = None):
    return [n.text for n in field.notes if level is None or n.level == level]


def oauth2_spec(**overrides) -> ProviderSpec:
    spec = dict(
        providerType="oauth2",
        clientId="oauth2-client",
        authorizationUrl=f"{OAUTH2_BASE}/authorize",
        tokenUrl=f"{OAUTH2_BASE}/token",
        userinfoUrl=f"{OAUTH2_BASE}/userinfo",
        scopes="read:user",
    )
    spec.update(overrides)
    return ProviderSpec(**spec)


@pytest.fixture
def oauth2_upstream(upstream):
    upstream.add("GET", f"{OAUTH2_BASE}/authorize", status_code=302, headers={"Location": "/login"})
    upstream.add("POST", f"{OAUTH2_BASE}/token", status_code=400, json_body={"error": "invalid_request"})
    upstream.add("GET", f"{OAUTH2_BASE}/userinfo", status_code=401, json_body={"message": "Bad credentials"})
    return upstream


# ============================================================================
# OIDC
# ============================================================================

class TestOIDCValidation:

    @pytest.mark.asyncio
    async def test_valid_configuration(self, http_options):
        spec = ProviderSpec(providerType="oidc", issuer=ISSUER, clientId="gateway")

        result = await validate_provider(spec, http_options, provider_name="oidc-test")

        assert result.valid is True
        assert result.oidcDiscovery.reachable is True
        assert result.oidcDiscovery.tokenEndpoint.value == f"{ISSUER}/protocol/openid-connect/token"
        assert "openid" in result.oidcDiscovery.supportedScopes
        assert result.summary.errorFields == 0
        assert result.summary.providerName == "oidc-test"
        assert result.summary.nextSteps == ["✓ All validations passed", "✓ Configuration is ready to use"]

    @pytest.mark.asyncio
    async def test_missing_issuer(self, http_options):
        result = await validate_provider(ProviderSpec(providerType="oidc", clientId="gateway"), http_options)

        assert result.valid is False
        assert note_texts(result.issuer) == ["OIDC provider requires an issuer URL"]
        assert result.oidcDiscovery is None

    @pytest.mark.asyncio
    async def test_discovery_unreachable(self, upstream, http_options):
        upstream.add_handler("GET", f"{ISSUER}/.well-known/openid-configuration", httpx.ConnectError("refused"))
        spec = ProviderSpec(providerType="oidc", issuer=ISSUER, clientId="gateway")

        result = await validate_provider(spec, http_options)

        assert result.valid is False
        assert note_texts(result.issuer)[0].startswith("Failed to fetch OIDC discovery document: connection error")
        assert result.oidcDiscovery.reachable is False
        assert note_texts(result.oidcDiscovery.tokenEndpoint) == ["Could not retrieve endpoint from discovery"]
        assert result.summary.nextSteps[0].startswith("Fix ")

    @pytest.mark.asyncio
    async def test_discovery_missing_fields(self, upstream, http_options):
        upstream.add(
            "GET", f"{ISSUER}/.well-known/openid-configuration",
            json_body={"issuer": ISSUER, "authorization_endpoint": f"{ISSUER}/auth", "token_endpoint": f"{ISSUER}/token"},
        )
        spec = ProviderSpec(providerType="oidc", issuer=ISSUER, clientId="gateway")

        result = await validate_provider(spec, http_options)

        assert result.valid is False
        assert note_texts(result.oidcDiscovery.userInfoEndpoint) == ["userinfo_endpoint missing from discovery document"]
        assert note_texts(result.oidcDiscovery.discoveryUrl, ValidationLevel.WARNING) == [
            "Discovery document is missing required fields"
        ]
        assert result.summary.warningFields == 1


# ============================================================================
# OAuth2
# ============================================================================

class TestOAuth2Validation:

    @pytest.mark.asyncio
    async def test_reachable_endpoints(self, oauth2_upstream, http_options):
        result = await validate_provider(oauth2_spec(), http_options)

        assert result.valid is True
        settings = result.oauth2Settings
        assert note_texts(settings.authorizationEndpoint) == ["Authorization endpoint is reachable"]
        assert note_texts(settings.tokenEndpoint) == ["Token endpoint is reachable and accepts POST method"]
        assert settings.scopes.value == "read:user"

        token_request = oauth2_upstream.requests_to("POST", f"{OAUTH2_BASE}/token")[0]
        assert token_request.content == b""
        userinfo_request = oauth2_upstream.requests_to("GET", f"{OAUTH2_BASE}/userinfo")[0]
        assert userinfo_request.headers["Authorization"] == "Bearer test-token-for-validation"

    @pytest.mark.asyncio
    async def test_token_endpoint_rejects_post(self, oauth2_upstream, http_options):
        oauth2_upstream.add("POST", f"{OAUTH2_BASE}/token", status_code=405)

        result = await validate_provider(oauth2_spec(), http_options)

        assert result.valid is False
        assert result.oauth2Settings.valid is False
        assert note_texts(result.oauth2Settings.tokenEndpoint) == ["Token endpoint does not accept POST method"]

    @pytest.mark.asyncio
    async def test_userinfo_not_found(self, oauth2_upstream, http_options):
        oauth2_upstream.add("GET", f"{OAUTH2_BASE}/userinfo", status_code=404)

        result = await validate_provider(oauth2_spec(), http_options)

        assert result.valid is False
        assert note_texts(result.oauth2Settings.userInfoEndpoint) == ["User info endpoint not found (404)"]

    @pytest.mark.asyncio
    async def test_userinfo_not_json(self, oauth2_upstream, http_options):
        oauth2_upstream.add("GET", f"{OAUTH2_BASE}/userinfo", status_code=200, text="<html></html>")

        result = await validate_provider(oauth2_spec(), http_options)

        assert result.valid is False
        assert note_texts(result.oauth2Settings.userInfoEndpoint)[0].startswith("User info endpoint does not return JSON")

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_is_a_warning(self, oauth2_upstream, http_options):
        oauth2_upstream.add_handler("GET", f"{OAUTH2_BASE}/authorize", httpx.ConnectTimeout("timed out"))

        result = await validate_provider(oauth2_spec(), http_options)

        assert result.valid is True
        notes = result.oauth2Settings.authorizationEndpoint.notes
        assert notes[0].level == ValidationLevel.WARNING
        assert result.summary.warningFields == 1
        assert result.summary.nextSteps == ["Configuration is valid but has warnings"]

    @pytest.mark.asyncio
    async def test_server_error_is_a_warning(self, oauth2_upstream, http_options):
        oauth2_upstream.add("POST", f"{OAUTH2_BASE}/token", status_code=503)

        result = await validate_provider(oauth2_spec(), http_options)

        assert result.valid is True
        assert note_texts(result.oauth2Settings.tokenEndpoint, ValidationLevel.WARNING) == [
            "Token endpoint returned server error 503"
        ]

    @pytest.mark.asyncio
    async def test_missing_fields(self, http_options):
        spec = ProviderSpec(providerType="oauth2", clientId="")

        result = await validate_provider(spec, http_options)

        assert result.valid is False
        settings = result.oauth2Settings
        assert note_texts(settings.authorizationEndpoint) == ["Authorization endpoint is required for OAuth2 providers"]
        assert note_texts(settings.tokenEndpoint) == ["Token endpoint is required for OAuth2 providers"]
        assert note_texts(settings.userInfoEndpoint) == ["UserInfo endpoint is required for OAuth2 providers"]
        assert note_texts(settings.scopes) == ["OAuth2 provider requires scopes to be configured"]
        assert note_texts(result.clientId) == ["Client ID is required"]
        assert result.summary.errorFields == 5
        assert result.summary.nextSteps == ["Fix 5 required field(s) marked with errors"]


# ============================================================================
# Other Types
# ============================================================================

@pytest.mark.asyncio
async def test_k8s_needs_no_client_id(http_options):
    result = await validate_provider(ProviderSpec(providerType="k8s"), http_options)

    assert result.valid is True
    assert note_texts(result.providerType, ValidationLevel.INFO)


@pytest.mark.asyncio
async def test_aap_requires_auth_url(http_options):
    result = await validate_provider(ProviderSpec(providerType="aap", clientId="x"), http_options)

    assert result.valid is False
    assert note_texts(result.authUrl) == ["aap provider requires authUrl"]


@pytest.mark.asyncio
async def test_openshift_requires_token_url(http_options):
    spec = ProviderSpec(providerType="openshift", clientId="x", authUrl="https://oauth.example.com")

    result = await validate_provider(spec, http_options)

    assert result.valid is False
    assert result.authUrl.valid is True
    assert note_texts(result.tokenUrl) == ["openshift provider requires tokenUrl"]


@pytest.mark.asyncio
async def test_unknown_type(http_options):
    result = await validate_provider(ProviderSpec(providerType="saml", clientId="x"), http_options)

    assert result.valid is False
    assert note_texts(result.providerType)[0].startswith("Unknown provider type 'saml'")


@pytest.mark.asyncio
async def test_blank_username_claim_segment(http_options):
    spec = ProviderSpec(providerType="k8s", usernameClaim="profile||login")

    result = await validate_provider(spec, http_options)

    assert result.valid is False
    assert result.usernameClaim.value == "profile||login"


# ============================================================================
# Organization Assignment
# ============================================================================

class TestOrganizationAssignment:

    @pytest.mark.asyncio
    async def test_dynamic_requires_claim_path(self, http_options):
        spec = ProviderSpec(providerType="k8s", organizationAssignment={"type": "Dynamic"})

        result = await validate_provider(spec, http_options)

        assert result.valid is False
        assert result.organizationAssignment.valid is False
        assert note_texts(result.organizationAssignment.claimPath) == [
            "Organization assignment type 'Dynamic' requires claimPath to be configured"
        ]

    @pytest.mark.asyncio
    async def test_static_requires_name(self, http_options):
        spec = ProviderSpec(providerType="k8s", organizationAssignment={"type": "Static"})

        result = await validate_provider(spec, http_options)

        assert result.valid is False
        assert note_texts(result.organizationAssignment.organizationName) == [
            "Static organization assignment requires organizationName"
        ]

    @pytest.mark.asyncio
    async def test_static_with_name(self, http_options):
        spec = ProviderSpec(
            providerType="k8s",
            organizationAssignment={"type": "Static", "organizationName": "default", "organizationNamePrefix": "org-"},
        )

        result = await validate_provider(spec, http_options)

        assert result.valid is True
        assert result.organizationAssignment.organizationNamePrefix.value == "org-"

    @pytest.mark.asyncio
    async def test_per_user_on_oidc_warns_about_claims(self, http_options):
        spec = ProviderSpec(
            providerType="oidc", issuer=ISSUER, clientId="gateway",
            organizationAssignment={"type": "PerUser", "claimPath": "groups"},
        )

        result = await validate_provider(spec, http_options)

        assert result.valid is True
        assert note_texts(result.organizationAssignment.claimPath, ValidationLevel.WARNING)
        assert result.summary.nextSteps == ["Configuration is valid but has warnings"]

    @pytest.mark.asyncio
    async def test_unknown_assignment_type(self, http_options):
        spec = ProviderSpec(providerType="k8s", organizationAssignment={"type": "Random"})

        result = await validate_provider(spec, http_options)

        assert result.valid is False


# ============================================================================
# Summary
# ============================================================================

def test_summary_counts_invalid_fields_and_warning_notes():
    result = ProviderValidationResult(valid=False)
    result.providerType = FieldValidation(valid=True, value="oidc")
    result.clientId = FieldValidation()
    result.clientId.add_error("Client ID is required")
    result.issuer = FieldValidation(valid=True, value=ISSUER)
    result.issuer.add_warning("first")
    result.issuer.add_warning("second")

    summary = build_summary(result)

    assert (summary.totalFields, summary.validFields, summary.errorFields, summary.warningFields) == (3, 2, 1, 2)
    assert summary.nextSteps == ["Fix 1 required field(s) marked with errors"]


def test_report_serialization_omits_absent_sections():
    body = ProviderValidationResult().to_response()
    assert "oidcDiscovery" not in body
    assert body["valid"] is True
