"""
Unit Tests for Claims Extraction
================================

Tests for authgateway/auth/claims.py

Test Coverage:
--------------
1. Nested claim path lookup (found / not found, never raising)
2. Claim value rendering
3. Username fallback order and the Anonymous sentinel
4. JWT payload decoding and expiry
5. Service-account username precedence
"""

import pytest

from authgateway.auth.claims import (
    ANONYMOUS_USERNAME,
    check_claim_path,
    claim_value_to_string,
    decode_jwt_claims,
    extract_claim_value,
    extract_username,
    get_value_by_path,
    resolve_username,
    service_account_username,
    token_expires_in,
)
from authgateway.errors import ConfigError, TokenError

from .conftest import future_exp, make_jwt


# ============================================================================
# Path Lookup
# ============================================================================

class TestGetValueByPath:

    def test_nested_value_found(self):
        assert get_value_by_path({"a": {"b": "x"}}, ["a", "b"]) == ("x", True)

    def test_non_object_before_last_segment(self):
        assert get_value_by_path({"a": "x"}, ["a", "b"]) == (None, False)

    def test_missing_segment(self):
        assert get_value_by_path({"a": {}}, ["a", "b"]) == (None, False)

    def test_empty_path(self):
        assert get_value_by_path({"a": 1}, []) == (None, False)

    def test_segments_are_literal_keys(self):
        claims = {"kubernetes.io": {"serviceaccount": {"name": "robot"}}}
        assert get_value_by_path(claims, ["kubernetes.io", "serviceaccount", "name"]) == ("robot", True)

    def test_explicit_null_is_found(self):
        assert get_value_by_path({"a": None}, ["a"]) == (None, True)


class TestClaimValueToString:

    @pytest.mark.parametrize("value,expected", [
        ("alice", "alice"),
        (42, "42"),
        (1234567890.0, "1234567890"),
        (1.5, "1.5"),
        (True, "true"),
        (False, "false"),
        (["a", "b"], '["a","b"]'),
        (None, None),
    ])
    def test_rendering(self, value, expected):
        assert claim_value_to_string(value) == expected


def test_check_claim_path_rejects_blank_segment():
    with pytest.raises(ConfigError):
        check_claim_path(["user", " "])


def test_check_claim_path_rejects_empty_path():
    with pytest.raises(ConfigError):
        check_claim_path([])


def test_extract_claim_value_renders_numbers():
    assert extract_claim_value({"user": {"id": 7}}, ["user", "id"]) == "7"


# ============================================================================
# Username Resolution
# ============================================================================

class TestUsernameResolution:

    def test_configured_path_wins(self):
        data = {"profile": {"login": "octocat"}, "email": "cat@example.com"}
        assert extract_username(data, ["profile", "login"]) == "octocat"

    def test_falls_back_to_email(self):
        data = {"email": "user@example.com", "sub": "1234"}
        assert extract_username(data, ["login"]) == "user@example.com"

    def test_fallback_order(self):
        data = {"sub": "1234", "name": "Jane", "username": "jdoe", "preferred_username": "jane"}
        assert extract_username(data) == "jane"

        del data["preferred_username"]
        assert extract_username(data) == "1234"

    def test_fallback_ignores_non_strings(self):
        assert extract_username({"sub": 12, "name": "Jane"}) == "Jane"

    def test_invalid_configured_path_uses_fallbacks(self):
        assert extract_username({"email": "a@b.c"}, ["", "x"]) == "a@b.c"

    def test_nothing_resolves(self):
        assert extract_username({"groups": ["admins"]}) is None
        assert resolve_username({"groups": ["admins"]}) == ANONYMOUS_USERNAME


# ============================================================================
# JWT Decoding
# ============================================================================

class TestDecodeJwtClaims:

    def test_decodes_payload_without_verification(self):
        token = make_jwt({"sub": "user-1", "exp": 1})
        claims = decode_jwt_claims(token)
        assert claims["sub"] == "user-1"

    def test_requires_three_segments(self):
        with pytest.raises(TokenError):
            decode_jwt_claims("header.payload")

    def test_rejects_garbage_payload(self):
        with pytest.raises(TokenError):
            decode_jwt_claims("aaa.!!!.ccc")

    def test_rejects_empty_token(self):
        with pytest.raises(TokenError):
            decode_jwt_claims("")


class TestVerifiedJwtClaims:

    def test_signed_token_decodes(self, signing_key):
        token = signing_key.sign({"sub": "user-1", "exp": future_exp()})
        claims = decode_jwt_claims(token, verify_key=signing_key.public_pem, algorithms=["RS256"])
        assert claims["sub"] == "user-1"

    def test_wrong_key_is_rejected(self, signing_key, other_signing_key):
        token = other_signing_key.sign({"sub": "user-1", "exp": future_exp()})
        with pytest.raises(TokenError):
            decode_jwt_claims(token, verify_key=signing_key.public_pem, algorithms=["RS256"])

    def test_expired_token_is_rejected(self, signing_key):
        token = signing_key.sign({"sub": "user-1", "exp": 1})
        with pytest.raises(TokenError):
            decode_jwt_claims(token, verify_key=signing_key.public_pem, algorithms=["RS256"])

    def test_unsigned_algorithm_is_rejected(self, signing_key):
        with pytest.raises(TokenError):
            decode_jwt_claims(make_jwt({"sub": "user-1"}), verify_key=signing_key.public_pem, algorithms=["RS256"])


class TestTokenExpiresIn:

    def test_seconds_remaining(self):
        assert token_expires_in({"exp": 1100}, now=1000) == 100

    def test_float_exp(self):
        assert token_expires_in({"exp": 1100.7}, now=1000) == 100

    def test_expired_is_clamped_to_zero(self):
        assert token_expires_in({"exp": 900}, now=1000) == 0

    def test_missing_exp(self):
        assert token_expires_in({}, now=1000) is None

    @pytest.mark.parametrize("exp", [float("inf"), float("-inf"), float("nan"), "1100"])
    def test_unusable_exp(self, exp):
        assert token_expires_in({"exp": exp}, now=1000) is None

    def test_exp_too_large_for_wall_clock(self):
        assert token_expires_in({"exp": 10 ** 400}, now=1000.5) is None


# ============================================================================
# Service Accounts
# ============================================================================

class TestServiceAccountUsername:

    def test_nested_claim_wins_over_sub(self):
        claims = {
            "kubernetes.io": {"serviceaccount": {"name": "foo"}},
            "sub": "system:serviceaccount:ns:bar",
        }
        assert service_account_username(claims) == "foo"

    def test_legacy_flat_claim(self):
        claims = {
            "kubernetes.io/serviceaccount/service-account.name": "legacy",
            "sub": "system:serviceaccount:ns:bar",
        }
        assert service_account_username(claims) == "legacy"

    def test_sub_is_parsed(self):
        assert service_account_username({"sub": "system:serviceaccount:ns:bar"}) == "bar"

    def test_raw_sub(self):
        assert service_account_username({"sub": "kube:admin"}) == "kube:admin"

    def test_no_claims(self):
        assert service_account_username({}) is None
