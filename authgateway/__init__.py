"""
Auth Gateway
============

Authentication gateway fronting the backend API: login, token refresh,
logout and username resolution across k8s, OIDC, OAuth2, AAP and OpenShift
identity providers, with one session cookie as the uniform session model.
"""

__version__ = "1.0.0"
