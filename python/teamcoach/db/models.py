"""SQLAlchemy ORM models for teamcoach.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are portable: PostgreSQL is the deployment target and SQLite
backs local development and tests. Enumerated values are stored as text and
guarded by CHECK constraints.

Foreign keys from account-owned rows use ON DELETE RESTRICT: an account is
only ever hard-deleted as the losing side of a merge, after all of its rows
have been re-pointed, so a leftover reference must abort the delete rather
than silently discard data.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(UTC)


class TZDateTime(TypeDecorator):
    """Timestamp that always round-trips as an aware UTC datetime.

    PostgreSQL stores timestamptz natively. SQLite has no timezone support,
    so values are normalised to naive UTC on the way in and tagged as UTC on
    the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class ConversationMode(str, PyEnum):
    """Whether a conversation coaches the manager alone or about their team."""

    personal = "personal"
    team = "team"


class MessageRole(str, PyEnum):
    """Author of a message."""

    user = "user"
    ai = "ai"


class BackupSource(str, PyEnum):
    """What produced a conversation backup.

    States:
        local_storage: Raw client history captured before a migration
        manual: On-demand snapshot requested by the owner
        automatic: Scheduled snapshot taken by the worker
        corruption_report: Audit record for an unsalvageable payload
    """

    local_storage = "local_storage"
    manual = "manual"
    automatic = "automatic"
    corruption_report = "corruption_report"


class EmailType(str, PyEnum):
    """Transactional email streams an account can subscribe to."""

    welcome = "welcome"
    weekly_coaching = "weekly_coaching"


# =============================================================================
# Models
# =============================================================================


class Account(Base):
    """Account model - one person's durable identity.

    ``id`` is assigned once (from the identity provider subject that first
    created the account) and never changes. ``subject_id`` is the provider
    subject currently linked to the account; it moves when the provider
    rotates identifiers.
    """

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    first_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_admin: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    has_completed_onboarding: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    top_strengths: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    __table_args__ = (
        Index(
            "uix_accounts_email_active",
            "email",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )


class TeamMember(Base):
    """TeamMember model - a person on a manager's team roster."""

    __tablename__ = "team_members"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    manager_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    strengths: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("manager_id", "name", name="uix_team_members_manager_name"),
    )


class Conversation(Base):
    """Conversation model - a coaching thread owned by one account."""

    __tablename__ = "conversations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    mode: Mapped[str] = mapped_column(Text, nullable=False, default=ConversationMode.personal.value)
    is_archived: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    last_activity: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    next_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    # Dedup key for history imported from a client device
    local_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("mode IN ('personal', 'team')", name="ck_conversations_mode"),
        CheckConstraint("next_seq >= 1", name="ck_conversations_next_seq_positive"),
        UniqueConstraint("owner_id", "local_id", name="uix_conversations_owner_local_id"),
        Index("ix_conversations_owner_activity", "owner_id", "is_archived", "last_activity"),
    )

    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        order_by="Message.seq",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Message(Base):
    """Message model - a single message in a conversation.

    Messages are immutable once written. ``seq`` and ``timestamp`` both
    increase strictly within a conversation.
    """

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(TZDateTime, nullable=False, default=utcnow)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        CheckConstraint("role IN ('user', 'ai')", name="ck_messages_role"),
        UniqueConstraint("conversation_id", "seq", name="uix_messages_conversation_seq"),
    )

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")


class ConversationBackup(Base):
    """ConversationBackup model - an opaque point-in-time snapshot."""

    __tablename__ = "conversation_backups"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    source: Mapped[str] = mapped_column(Text, nullable=False)
    backup_data: Mapped[Any] = mapped_column(JSONType, nullable=False)
    conversation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    restored_at: Mapped[datetime | None] = mapped_column(TZDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "source IN ('local_storage', 'manual', 'automatic', 'corruption_report')",
            name="ck_conversation_backups_source",
        ),
        Index("ix_conversation_backups_owner_created", "owner_id", "created_at"),
    )


class EmailSubscription(Base):
    """EmailSubscription model - per-account opt-in for one email stream."""

    __tablename__ = "email_subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    email_type: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    timezone: Mapped[str] = mapped_column(Text, nullable=False, default="UTC", server_default="UTC")
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime, nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "email_type IN ('welcome', 'weekly_coaching')",
            name="ck_email_subscriptions_type",
        ),
        UniqueConstraint("account_id", "email_type", name="uix_email_subscriptions_account_type"),
    )
