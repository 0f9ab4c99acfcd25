"""Schemas for importing client-held chat history and for backups.

Local history uses the browser's storage format: camelCase keys, messages
carry their role in ``type``. Both camelCase and snake_case are accepted.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class MigrationState(str, Enum):
    """Per-account migration lifecycle."""

    not_migrated = "not_migrated"
    migrating = "migrating"
    migrated = "migrated"


class LocalMessage(BaseModel):
    """One message from client-held history."""

    id: str | None = None
    role: Literal["user", "ai"] = Field(validation_alias=AliasChoices("type", "role"))
    content: str = Field(min_length=1)
    timestamp: datetime | None = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Browsers generate numeric ids from Date.now()
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(int(value))
        return value


class LocalConversation(BaseModel):
    """One conversation from client-held history."""

    id: str | None = None
    title: str = Field(min_length=1)
    mode: Literal["personal", "team"] = "personal"
    messages: list[dict[str, Any]]
    last_activity: datetime | None = Field(
        default=None, validation_alias=AliasChoices("lastActivity", "last_activity")
    )

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(int(value))
        return value

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value[:200]


class MigrationItemFailure(BaseModel):
    """A local conversation that could not be imported. Collected, never raised."""

    index: int
    local_id: str | None = None
    reason: str


class MigrationResult(BaseModel):
    """Outcome of one migrate call."""

    conversations_created: int = 0
    messages_created: int = 0
    conversations_skipped: int = 0
    messages_skipped: int = 0
    failures: list[MigrationItemFailure] = Field(default_factory=list)
    backup_id: UUID | None = None


class RecoveryResult(BaseModel):
    """Outcome of recover_corrupted."""

    strategy: str | None = None
    recovered_items: int = 0
    migration: MigrationResult | None = None
    corruption_backup_id: UUID | None = None


class MigrateRequest(BaseModel):
    """Request body for migrate / recover: the raw client history string."""

    local_history: str = Field(validation_alias=AliasChoices("local_history", "localStorageData"))

    model_config = ConfigDict(populate_by_name=True)


class BackupOut(BaseModel):
    """Backup summary. The snapshot body is not returned in listings."""

    id: UUID
    owner_id: str
    source: str
    conversation_count: int
    message_count: int
    created_at: datetime
    restored_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class RestoreResult(BaseModel):
    backup_id: UUID
    conversations_restored: int
    messages_restored: int
    conversation_ids: list[UUID]
