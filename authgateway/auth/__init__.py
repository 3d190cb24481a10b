"""
Authentication Package

This package handles the session and protocol side of the gateway.

Key responsibilities:
- Authorization code flow with PKCE for every provider type
- OIDC discovery with internal/external endpoint rewriting
- Session cookie encoding and the per-provider PKCE verifier cookie
- Username resolution from nested claims and unverified JWT payloads

Modules:
- routes: Public endpoints (/api/login, /api/refresh, /api/userinfo, ...)
- oauth: Token exchange, PKCE, state parameter and discovery helpers
- session: Session and PKCE cookie codec
- claims: Claim path lookup, JWT payload decoding, username fallbacks

The login flow:
1. Client asks GET /api/login for the IdP authorization URL
2. User authenticates at the IdP, which redirects back with a code
3. Client posts the code to POST /api/login
4. Gateway exchanges the code, sets the session cookie
5. The bearer token middleware attaches the session token to API calls
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
