"""Team roster Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from teamcoach.schemas.account import clean_strengths


class TeamMemberOut(BaseModel):
    """Response schema for a team member."""

    id: UUID
    manager_id: str
    name: str
    strengths: list[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class TeamMemberCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    strengths: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("strengths")
    @classmethod
    def _validate_strengths(cls, value: list[str]) -> list[str]:
        return clean_strengths(value) or []


class TeamMemberUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    strengths: list[str] | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("strengths")
    @classmethod
    def _validate_strengths(cls, value: list[str] | None) -> list[str] | None:
        return clean_strengths(value)
