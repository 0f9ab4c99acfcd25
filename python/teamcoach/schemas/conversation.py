"""Conversation and Message Pydantic schemas.

Contains request and response models for conversation and message endpoints.
The ORM column is named ``metadata`` but mapped as ``meta`` (the declarative
base reserves ``metadata``), so *Out schemas are built by the service's
converter functions rather than from_attributes.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Valid conversation modes - must match DB constraint
CONVERSATION_MODES = Literal["personal", "team"]

# Valid message roles - must match DB constraint
MESSAGE_ROLES = Literal["user", "ai"]

MAX_TITLE_LENGTH = 200


# =============================================================================
# Response Schemas
# =============================================================================


class ConversationOut(BaseModel):
    """Response schema for a conversation (without messages)."""

    id: UUID
    owner_id: str
    title: str
    mode: str
    is_archived: bool
    last_activity: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(frozen=True)


class MessageOut(BaseModel):
    """Response schema for a message. Ordered by seq (and timestamp) within a conversation."""

    id: UUID
    conversation_id: UUID
    seq: int
    role: str
    content: str
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class ConversationDetail(ConversationOut):
    """A conversation with its ordered messages."""

    messages: list[MessageOut]


# =============================================================================
# Request Schemas
# =============================================================================


class ConversationCreate(BaseModel):
    """Request body for POST /conversations."""

    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    mode: CONVERSATION_MODES = "personal"
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConversationUpdate(BaseModel):
    """Request body for PATCH /conversations/{id}. Unset fields are left alone."""

    title: str | None = Field(default=None, min_length=1, max_length=MAX_TITLE_LENGTH)
    mode: CONVERSATION_MODES | None = None
    metadata: dict[str, Any] | None = None


class MessageCreate(BaseModel):
    """Request body for POST /conversations/{id}/messages.

    ``timestamp`` is a lower bound only; the store raises it if needed so
    timestamps stay strictly increasing.
    """

    role: MESSAGE_ROLES
    content: str = Field(min_length=1)
    timestamp: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ArchiveInactiveRequest(BaseModel):
    """Request body for POST /conversations/archive-inactive."""

    days_old: int | None = Field(default=None, ge=1, le=3650)
