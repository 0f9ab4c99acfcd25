"""Conversation backups.

A backup is a JSON snapshot of an account's conversations in the export
document shape (see ConversationStore.export). Taking a backup never changes
live conversations. Restoring a backup only ever adds new conversations:
originals are left untouched and restoring twice yields two copies.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from teamcoach.db.models import BackupSource, ConversationBackup, utcnow
from teamcoach.db.session import storage_guard, transaction
from teamcoach.errors import ApiErrorCode, NotFoundError
from teamcoach.logging import get_logger
from teamcoach.schemas.migration import BackupOut, LocalConversation, LocalMessage, RestoreResult
from teamcoach.services.conversations import (
    ConversationStore,
    append_message,
    insert_conversation,
)

logger = get_logger(__name__)

RESTORED_TITLE_SUFFIX = " (Restored)"


def backup_to_out(backup: ConversationBackup) -> BackupOut:
    return BackupOut.model_validate(backup)


def insert_backup(
    db: Session,
    account_id: str,
    source: BackupSource,
    backup_data: dict[str, Any],
    conversation_count: int,
    message_count: int,
) -> ConversationBackup:
    """Insert a backup row inside the caller's transaction."""
    backup = ConversationBackup(
        owner_id=account_id,
        source=source.value,
        backup_data=backup_data,
        conversation_count=conversation_count,
        message_count=message_count,
        created_at=utcnow(),
    )
    db.add(backup)
    db.flush()
    return backup


def get_backup_for_owner_or_404(db: Session, account_id: str, backup_id: UUID) -> ConversationBackup:
    """Load a backup and verify ownership.

    Raises:
        NotFoundError(E_BACKUP_NOT_FOUND): Missing or owned by another account.
    """
    backup = db.get(ConversationBackup, backup_id)
    if backup is None or backup.owner_id != account_id:
        raise NotFoundError(ApiErrorCode.E_BACKUP_NOT_FOUND, "Backup not found")
    return backup


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class BackupStore:
    def __init__(self, conversations: ConversationStore):
        self.conversations = conversations

    @storage_guard("backups.create")
    def create_backup(
        self, db: Session, account_id: str, source: BackupSource = BackupSource.manual
    ) -> BackupOut:
        """Snapshot all of the account's conversations, archived ones included."""
        snapshot = self.conversations.export(db, account_id, include_archived=True)
        with transaction(db):
            backup = insert_backup(
                db,
                account_id,
                source,
                snapshot,
                conversation_count=snapshot["conversation_count"],
                message_count=snapshot["message_count"],
            )

        logger.info(
            "backup_created",
            backup_id=str(backup.id),
            source=backup.source,
            conversation_count=backup.conversation_count,
        )
        return backup_to_out(backup)

    @storage_guard("backups.list")
    def list_backups(self, db: Session, account_id: str) -> list[BackupOut]:
        """Newest first."""
        rows = db.scalars(
            select(ConversationBackup)
            .where(ConversationBackup.owner_id == account_id)
            .order_by(ConversationBackup.created_at.desc(), ConversationBackup.id.desc())
        ).all()
        return [backup_to_out(row) for row in rows]

    @storage_guard("backups.get")
    def get_backup(self, db: Session, backup_id: UUID, account_id: str) -> BackupOut:
        return backup_to_out(get_backup_for_owner_or_404(db, account_id, backup_id))

    @storage_guard("backups.restore")
    def restore(self, db: Session, backup_id: UUID, account_id: str) -> RestoreResult:
        """Recreate the backed-up conversations as new conversations.

        Entries that no longer validate are skipped. Corruption reports hold
        no conversations and restore nothing.

        Raises:
            NotFoundError(E_BACKUP_NOT_FOUND): Missing or owned by another account.
        """
        conversation_ids: list[UUID] = []
        message_total = 0

        with transaction(db):
            backup = get_backup_for_owner_or_404(db, account_id, backup_id)
            data = backup.backup_data if isinstance(backup.backup_data, dict) else {}
            entries = data.get("conversations") or []

            for entry in entries:
                try:
                    local = LocalConversation.model_validate(entry)
                except ValidationError:
                    logger.warning("backup_entry_skipped", backup_id=str(backup_id))
                    continue

                conversation = insert_conversation(
                    db,
                    account_id,
                    f"{local.title}{RESTORED_TITLE_SUFFIX}",
                    mode=local.mode,
                    metadata={
                        "restored_from_backup": str(backup.id),
                        "original_conversation_id": local.id,
                    },
                    last_activity=_as_aware(local.last_activity),
                )
                for raw_message in local.messages:
                    try:
                        message = LocalMessage.model_validate(raw_message)
                    except ValidationError:
                        continue
                    append_message(
                        db,
                        conversation,
                        role=message.role,
                        content=message.content,
                        timestamp=message.timestamp,
                        metadata={"original_message_id": message.id},
                        bump_activity=local.last_activity is None,
                    )
                    message_total += 1
                conversation_ids.append(conversation.id)

            backup.restored_at = utcnow()

        self.conversations.invalidate_account(account_id)
        logger.info(
            "backup_restored",
            backup_id=str(backup_id),
            conversations_restored=len(conversation_ids),
            messages_restored=message_total,
        )
        return RestoreResult(
            backup_id=backup_id,
            conversations_restored=len(conversation_ids),
            messages_restored=message_total,
            conversation_ids=conversation_ids,
        )
