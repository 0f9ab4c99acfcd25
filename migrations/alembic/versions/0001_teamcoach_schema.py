"""Teamcoach schema - accounts, team members, conversations, messages, backups,
email subscriptions

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Account-owned rows reference accounts with ON DELETE RESTRICT: an account is
only ever hard-deleted as the losing side of a merge, after its rows have
been moved to the survivor.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()") if default else None,
        nullable=nullable,
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # accounts table
    # ==========================================================================
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("subject_id", sa.String(255), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=True),
        sa.Column("profile_image_url", sa.Text(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column(
            "has_completed_onboarding",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column(
            "top_strengths",
            postgresql.JSONB(),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("deleted_at", nullable=True, default=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subject_id", name="uq_accounts_subject_id"),
    )
    # One active account per email; soft-deleted accounts release their email
    op.create_index(
        "uix_accounts_email_active",
        "accounts",
        ["email"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    # ==========================================================================
    # team_members table
    # ==========================================================================
    op.create_table(
        "team_members",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("manager_id", sa.String(255), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column(
            "strengths",
            postgresql.JSONB(),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["manager_id"], ["accounts.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("manager_id", "name", name="uix_team_members_manager_name"),
    )

    # ==========================================================================
    # conversations table
    # ==========================================================================
    op.create_table(
        "conversations",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("mode", sa.Text(), server_default="personal", nullable=False),
        sa.Column("is_archived", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _timestamp("last_activity"),
        sa.Column("next_seq", sa.Integer(), server_default="1", nullable=False),
        sa.Column("local_id", sa.Text(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["owner_id"], ["accounts.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("mode IN ('personal', 'team')", name="ck_conversations_mode"),
        sa.CheckConstraint("next_seq >= 1", name="ck_conversations_next_seq_positive"),
        sa.UniqueConstraint("owner_id", "local_id", name="uix_conversations_owner_local_id"),
    )
    op.create_index(
        "ix_conversations_owner_activity",
        "conversations",
        ["owner_id", "is_archived", "last_activity"],
    )

    # ==========================================================================
    # messages table
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("conversation_id", sa.UUID(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _timestamp("timestamp"),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        sa.CheckConstraint("role IN ('user', 'ai')", name="ck_messages_role"),
        sa.UniqueConstraint("conversation_id", "seq", name="uix_messages_conversation_seq"),
    )

    # ==========================================================================
    # conversation_backups table
    # ==========================================================================
    op.create_table(
        "conversation_backups",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("backup_data", postgresql.JSONB(), nullable=False),
        sa.Column("conversation_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("message_count", sa.Integer(), server_default="0", nullable=False),
        _timestamp("created_at"),
        _timestamp("restored_at", nullable=True, default=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["owner_id"], ["accounts.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "source IN ('local_storage', 'manual', 'automatic', 'corruption_report')",
            name="ck_conversation_backups_source",
        ),
    )
    op.create_index(
        "ix_conversation_backups_owner_created",
        "conversation_backups",
        ["owner_id", "created_at"],
    )

    # ==========================================================================
    # email_subscriptions table
    # ==========================================================================
    op.create_table(
        "email_subscriptions",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("account_id", sa.String(255), nullable=False),
        sa.Column("email_type", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("timezone", sa.Text(), server_default="UTC", nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "email_type IN ('welcome', 'weekly_coaching')",
            name="ck_email_subscriptions_type",
        ),
        sa.UniqueConstraint("account_id", "email_type", name="uix_email_subscriptions_account_type"),
    )


def downgrade() -> None:
    op.drop_table("email_subscriptions")
    op.drop_index("ix_conversation_backups_owner_created", table_name="conversation_backups")
    op.drop_table("conversation_backups")
    op.drop_table("messages")
    op.drop_index("ix_conversations_owner_activity", table_name="conversations")
    op.drop_table("conversations")
    op.drop_table("team_members")
    op.drop_index("uix_accounts_email_active", table_name="accounts")
    op.drop_table("accounts")
