"""
Configuration module for the Auth Gateway.

This module uses Pydantic Settings to load and validate environment variables
for the backend API connection, IdP transport, session cookies, PKCE handling,
and CORS settings.

Environment variables are loaded from .env file or system environment.
"""

import ssl
from functools import lru_cache
from typing import List, Optional, Union

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the backend API, identity provider transport,
    session cookies and security policies are defined here.
    """

    # =========================================================================
    # Backend API Configuration
    # =========================================================================

    API_URL: HttpUrl = Field(
        ...,
        description="Backend API base URL (e.g., https://api.example.com:3443)",
    )

    BASE_UI_URL: HttpUrl = Field(
        ...,
        description="Externally visible UI URL, used to build the OAuth redirect URI",
    )

    AUTH_PROVIDERS_FILE: Optional[str] = Field(
        None,
        description="JSON file with a static provider list (replaces the backend config source)",
    )

    # =========================================================================
    # Identity Provider Transport
    # =========================================================================

    INTERNAL_AUTH_URL: Optional[str] = Field(
        None,
        description="Cluster-local URL of the default provider's IdP, used for its server-to-server calls",
    )

    AUTH_CA_FILE: Optional[str] = Field(
        None,
        description="CA bundle used to verify IdP and backend certificates",
    )

    AUTH_INSECURE_SKIP_VERIFY: bool = Field(
        default=False,
        description="Skip upstream TLS certificate verification (development only)",
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout applied to every upstream HTTP call",
        ge=5.0,
        le=30.0,
    )

    # =========================================================================
    # TLS Configuration
    # =========================================================================

    TLS_CERT_FILE: Optional[str] = Field(
        None,
        description="Server certificate; when set with TLS_KEY_FILE cookies are marked Secure",
    )

    TLS_KEY_FILE: Optional[str] = Field(
        None,
        description="Server private key",
    )

    # =========================================================================
    # Session Cookie Configuration
    # =========================================================================

    SESSION_COOKIE_NAME: str = Field(
        default="authgateway-session",
        description="Name of the session cookie",
        min_length=1,
    )

    PKCE_COOKIE_MAX_AGE: int = Field(
        default=300,
        description="Lifetime of the per-provider PKCE verifier cookie in seconds",
        ge=30,
        le=3600,
    )

    PKCE_STATE_FALLBACK: bool = Field(
        default=False,
        description="Also embed the PKCE verifier in the OAuth state parameter",
    )

    # =========================================================================
    # JWT Verification (optional)
    # =========================================================================

    JWT_VERIFY_PUBLIC_KEY: Optional[str] = Field(
        None,
        description="PEM public key; when set, K8s/OpenShift tokens are signature-verified",
    )

    JWT_VERIFY_ALGORITHMS: str = Field(
        default="RS256",
        description="Comma-separated algorithms accepted with JWT_VERIFY_PUBLIC_KEY",
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the gateway server",
    )

    PORT: int = Field(
        default=8080,
        description="Port to bind the gateway server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def api_url_str(self) -> str:
        """Backend API URL without trailing slash."""
        return str(self.API_URL).rstrip("/")

    @property
    def base_ui_url_str(self) -> str:
        """UI URL without trailing slash."""
        return str(self.BASE_UI_URL).rstrip("/")

    @property
    def redirect_uri(self) -> str:
        """OAuth redirect URI registered with every provider."""
        return f"{self.base_ui_url_str}/callback"

    @property
    def tls_enabled(self) -> bool:
        return bool(self.TLS_CERT_FILE and self.TLS_KEY_FILE)

    @property
    def verify(self) -> Union[bool, ssl.SSLContext]:
        """
        Value for the ``verify`` argument of httpx clients.

        Returns:
            False when verification is disabled, an SSL context trusting the
            CA bundle when one is configured, True otherwise.
        """
        if self.AUTH_INSECURE_SKIP_VERIFY:
            return False
        if self.AUTH_CA_FILE:
            return ssl.create_default_context(cafile=self.AUTH_CA_FILE)
        return True

    @property
    def jwt_algorithms_list(self) -> List[str]:
        return [a.strip() for a in self.JWT_VERIFY_ALGORITHMS.split(",") if a.strip()]

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate LOG_LEVEL is a standard logging level name.

        Args:
            v: Raw level name

        Returns:
            Upper-cased level name

        Raises:
            ValueError: If the level is unknown
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        level = v.upper()
        if level not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")
        return level

    @field_validator("INTERNAL_AUTH_URL")
    @classmethod
    def validate_internal_auth_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().rstrip("/")
        if not v:
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"INTERNAL_AUTH_URL must be an http(s) URL, got: {v}")
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def mask_secret(secret: Optional[str]) -> str:
    """
    Mask a secret for logging, keeping only the first four characters.

    Example:
        >>> mask_secret("supersecret")
        'supe***'
        >>> mask_secret("")
        '(empty)'
    """
    if not secret:
        return "(empty)"
    if len(secret) <= 4:
        return "***"
    return secret[:4] + "***"


def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    This is called during application startup so that risky but legal
    combinations show up in the logs.

    Args:
        settings: Loaded settings

    Returns:
        Dictionary with validation status, errors and warnings.
    """
    errors = []
    warnings = []

    if bool(settings.TLS_CERT_FILE) != bool(settings.TLS_KEY_FILE):
        errors.append("TLS_CERT_FILE and TLS_KEY_FILE must be configured together")

    if not settings.tls_enabled:
        warnings.append("TLS is not configured; session cookies will not be marked Secure")

    if settings.AUTH_INSECURE_SKIP_VERIFY:
        warnings.append("Upstream TLS verification is disabled")

    if settings.PKCE_STATE_FALLBACK:
        warnings.append("PKCE verifier is embedded in the OAuth state parameter")

    if settings.JWT_VERIFY_PUBLIC_KEY and not settings.jwt_algorithms_list:
        errors.append("JWT_VERIFY_ALGORITHMS is empty while JWT_VERIFY_PUBLIC_KEY is set")

    if "localhost" in settings.api_url_str or "127.0.0.1" in settings.api_url_str:
        warnings.append("Backend URL points to localhost (may cause issues in containers)")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
    }
