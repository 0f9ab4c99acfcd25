"""Authentication.

This module provides:
- Token verification (JWKS verifier)
- Auth middleware that resolves the bearer token to an account
- Request state with viewer identity

Note: Test-only verifiers are in tests/support/test_verifier.py
"""

from teamcoach.auth.middleware import AuthMiddleware, Viewer, get_viewer
from teamcoach.auth.verifier import JwksTokenVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "JwksTokenVerifier",
    "TokenVerifier",
    "Viewer",
    "get_viewer",
]
