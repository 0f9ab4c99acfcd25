"""Test helpers for authentication and common test operations.

Provides:
- Token minting for test authentication (subject + email claims)
- Header generation for test requests
- A manually advanced clock for cache tests
"""

import time
from uuid import uuid4

import jwt

from tests.support.test_verifier import MockJwtVerifier, generate_rsa_keypair

DEFAULT_ISSUER = "test-issuer"
DEFAULT_AUDIENCE = "test-audience"
DEFAULT_EXPIRES_IN = 3600


def mint_test_token(
    subject: str,
    email: str | None = None,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = DEFAULT_ISSUER,
    audience: str = DEFAULT_AUDIENCE,
    **extra_claims,
) -> str:
    """Mint a valid test JWT for a provider subject.

    email defaults to "<subject>@example.com". Pass email="" for a token
    without a usable email claim.
    """
    now = int(time.time())
    payload = {
        "sub": subject,
        "email": email if email is not None else f"{subject}@example.com",
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }
    return jwt.encode(payload, MockJwtVerifier.get_private_key(), algorithm="RS256")


def mint_expired_token(subject: str, email: str | None = None) -> str:
    """Mint a token that expired an hour ago."""
    return mint_test_token(subject, email=email, expires_in=-3600)


def mint_token_with_bad_signature(subject: str, email: str | None = None) -> str:
    """Mint a token signed with a key the verifier does not know."""
    private_key, _ = generate_rsa_keypair()
    now = int(time.time())
    payload = {
        "sub": subject,
        "email": email or f"{subject}@example.com",
        "iss": DEFAULT_ISSUER,
        "aud": DEFAULT_AUDIENCE,
        "iat": now,
        "exp": now + DEFAULT_EXPIRES_IN,
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


def auth_headers(subject: str, email: str | None = None, **token_kwargs) -> dict[str, str]:
    """Return headers dict with valid Authorization for the given subject."""
    token = mint_test_token(subject, email=email, **token_kwargs)
    return {"Authorization": f"Bearer {token}"}


def create_test_subject() -> str:
    """A provider-style subject id (opaque, not necessarily a UUID)."""
    return f"user_{uuid4().hex[:16]}"


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
