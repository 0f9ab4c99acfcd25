"""Account and identity Pydantic schemas.

AccountOut is the value cached by the account store, so it is frozen:
callers receive the same instance the cache holds.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_TOP_STRENGTHS = 5


def normalize_email(email: str) -> str:
    """Emails compare case-insensitively and ignore surrounding whitespace."""
    return email.strip().lower()


def clean_strengths(value: list[str] | None) -> list[str] | None:
    if value is None:
        return None
    cleaned = [s.strip() for s in value if s and s.strip()]
    if len(cleaned) > MAX_TOP_STRENGTHS:
        raise ValueError(f"At most {MAX_TOP_STRENGTHS} strengths may be selected")
    if len(set(cleaned)) != len(cleaned):
        raise ValueError("Strengths must be unique")
    return cleaned


class AccountOut(BaseModel):
    """Response schema for an account."""

    id: str
    subject_id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    is_admin: bool
    has_completed_onboarding: bool
    top_strengths: tuple[str, ...]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class AccountCreate(BaseModel):
    """Fields for a new account. Only the identity reconciler creates accounts."""

    id: str = Field(min_length=1, max_length=255)
    subject_id: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=320)
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return normalize_email(value)


class AccountUpdate(BaseModel):
    """Partial update; only fields explicitly set are written."""

    email: str | None = Field(default=None, min_length=3, max_length=320)
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    is_admin: bool | None = None
    has_completed_onboarding: bool | None = None
    top_strengths: list[str] | None = None

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str | None) -> str | None:
        return normalize_email(value) if value is not None else None

    @field_validator("top_strengths")
    @classmethod
    def _validate_strengths(cls, value: list[str] | None) -> list[str] | None:
        return clean_strengths(value)


class OnboardingRequest(BaseModel):
    """Request body for POST /me/onboarding."""

    top_strengths: list[str] = Field(min_length=1)
    first_name: str | None = None
    last_name: str | None = None

    @field_validator("top_strengths")
    @classmethod
    def _validate_strengths(cls, value: list[str]) -> list[str]:
        return clean_strengths(value) or []


class AdminToggleRequest(BaseModel):
    """Request body for PUT /admin/accounts/{id}/admin."""

    is_admin: bool


class IdentityClaim(BaseModel):
    """Per-request identity assertion taken from a verified token. Never persisted."""

    subject_id: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=320)
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        value = normalize_email(value)
        if "@" not in value:
            raise ValueError("email must contain '@'")
        return value

    @classmethod
    def from_token_claims(cls, claims: Mapping[str, Any]) -> "IdentityClaim":
        """Build a claim from decoded JWT claims.

        Accepts both OIDC names (given_name, family_name, picture) and the
        provider's session-token names (first_name, last_name, image_url).

        Raises:
            pydantic.ValidationError: subject or email missing or malformed.
        """
        return cls(
            subject_id=claims.get("sub") or "",
            email=claims.get("email") or "",
            first_name=claims.get("given_name") or claims.get("first_name"),
            last_name=claims.get("family_name") or claims.get("last_name"),
            profile_image_url=claims.get("picture") or claims.get("image_url"),
        )


class EmailSubscriptionOut(BaseModel):
    email_type: str
    is_active: bool
    timezone: str

    model_config = ConfigDict(from_attributes=True)


class EmailSubscriptionUpdate(BaseModel):
    is_active: bool
