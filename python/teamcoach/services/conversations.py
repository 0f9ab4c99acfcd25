"""Conversation and Message store.

All operations are scoped by owner account id:
- A conversation id alone is never enough to read or mutate it
- Missing and foreign conversations both raise E_CONVERSATION_NOT_FOUND (prevent probing)

The non-archived conversation list for an account is cached under
conversations:{account_id}; every create/update/archive/delete/add_message
for that account invalidates it before returning.

The module-level helpers (insert_conversation, append_message) work inside a
caller's open transaction and do not touch the cache. The migration and
restore paths use them to write many rows atomically and then invalidate once.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from teamcoach.cache import TTLCache
from teamcoach.db.models import Conversation, Message, utcnow
from teamcoach.db.session import storage_guard, transaction
from teamcoach.errors import ApiErrorCode, NotFoundError
from teamcoach.logging import get_logger
from teamcoach.schemas.conversation import (
    ConversationCreate,
    ConversationDetail,
    ConversationOut,
    ConversationUpdate,
    MessageCreate,
    MessageOut,
)
from teamcoach.services.seq import assign_next_message_seq, next_message_timestamp

logger = get_logger(__name__)

EXPORT_VERSION = 1


def conversation_list_key(account_id: str) -> str:
    return f"conversations:{account_id}"


# =============================================================================
# Helper Functions
# =============================================================================


def conversation_to_out(conversation: Conversation) -> ConversationOut:
    """Convert Conversation ORM model to ConversationOut schema."""
    return ConversationOut(
        id=conversation.id,
        owner_id=conversation.owner_id,
        title=conversation.title,
        mode=conversation.mode,
        is_archived=conversation.is_archived,
        last_activity=conversation.last_activity,
        metadata=dict(conversation.meta or {}),
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


def message_to_out(message: Message) -> MessageOut:
    """Convert Message ORM model to MessageOut schema."""
    return MessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        seq=message.seq,
        role=message.role,
        content=message.content,
        timestamp=message.timestamp,
        metadata=dict(message.meta or {}),
    )


def get_conversation_for_owner_or_404(
    db: Session, account_id: str, conversation_id: UUID
) -> Conversation:
    """Load conversation and verify ownership.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If conversation doesn't exist
            OR account_id is not the owner.
    """
    conversation = db.get(Conversation, conversation_id)
    if conversation is None or conversation.owner_id != account_id:
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")
    return conversation


def list_messages(db: Session, conversation_id: UUID) -> list[Message]:
    """Messages in chat order (seq ascending, which is also timestamp order)."""
    return list(
        db.scalars(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.seq.asc(), Message.id.asc())
        ).all()
    )


def insert_conversation(
    db: Session,
    account_id: str,
    title: str,
    mode: str = "personal",
    metadata: dict[str, Any] | None = None,
    local_id: str | None = None,
    last_activity: datetime | None = None,
) -> Conversation:
    """Insert a conversation row inside the caller's transaction."""
    now = utcnow()
    conversation = Conversation(
        owner_id=account_id,
        title=title,
        mode=mode,
        is_archived=False,
        last_activity=last_activity or now,
        next_seq=1,
        local_id=local_id,
        meta=metadata or {},
        created_at=now,
        updated_at=now,
    )
    db.add(conversation)
    db.flush()
    return conversation


def append_message(
    db: Session,
    conversation: Conversation,
    role: str,
    content: str,
    timestamp: datetime | None = None,
    metadata: dict[str, Any] | None = None,
    bump_activity: bool = True,
) -> Message:
    """Append a message inside the caller's transaction.

    Assigns the next seq under the conversation row lock and a timestamp
    strictly after the previous message's.
    """
    seq = assign_next_message_seq(db, conversation.id)
    ts = next_message_timestamp(db, conversation.id, timestamp)
    message = Message(
        conversation_id=conversation.id,
        seq=seq,
        role=role,
        content=content,
        timestamp=ts,
        meta=metadata or {},
        created_at=utcnow(),
    )
    db.add(message)
    if bump_activity and ts > conversation.last_activity:
        conversation.last_activity = ts
    db.flush()
    return message


# =============================================================================
# Store
# =============================================================================


class ConversationStore:
    """Owner-scoped conversation/message CRUD with a cached per-account list."""

    def __init__(self, cache: TTLCache):
        self.cache = cache

    @storage_guard("conversations.list")
    def list_conversations(self, db: Session, account_id: str) -> list[ConversationOut]:
        """Non-archived conversations, most recent activity first."""
        key = conversation_list_key(account_id)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        epoch = self.cache.begin_fill()
        rows = db.scalars(
            select(Conversation)
            .where(Conversation.owner_id == account_id, Conversation.is_archived.is_(False))
            .order_by(Conversation.last_activity.desc(), Conversation.id.desc())
        ).all()
        conversations = tuple(conversation_to_out(row) for row in rows)
        self.cache.set(key, conversations, epoch=epoch)
        return list(conversations)

    @storage_guard("conversations.get")
    def get(self, db: Session, conversation_id: UUID, account_id: str) -> ConversationDetail:
        """Get a conversation with its ordered messages.

        Archived conversations are still readable by their owner.

        Raises:
            NotFoundError(E_CONVERSATION_NOT_FOUND): Missing or owned by another account.
        """
        conversation = get_conversation_for_owner_or_404(db, account_id, conversation_id)
        messages = [message_to_out(m) for m in list_messages(db, conversation_id)]
        return ConversationDetail(
            **conversation_to_out(conversation).model_dump(), messages=messages
        )

    @storage_guard("conversations.create")
    def create(self, db: Session, account_id: str, fields: ConversationCreate) -> ConversationOut:
        with transaction(db):
            conversation = insert_conversation(
                db, account_id, fields.title, mode=fields.mode, metadata=fields.metadata
            )

        self.invalidate_account(account_id)
        logger.info(
            "conversation_created", conversation_id=str(conversation.id), mode=conversation.mode
        )
        return conversation_to_out(conversation)

    @storage_guard("conversations.update")
    def update(
        self, db: Session, conversation_id: UUID, account_id: str, fields: ConversationUpdate
    ) -> ConversationOut:
        """Rename, change mode, or replace metadata."""
        changes = fields.model_dump(exclude_unset=True, exclude_none=True)
        with transaction(db):
            conversation = get_conversation_for_owner_or_404(db, account_id, conversation_id)
            if "title" in changes:
                conversation.title = changes["title"]
            if "mode" in changes:
                conversation.mode = changes["mode"]
            if "metadata" in changes:
                conversation.meta = changes["metadata"]
            conversation.updated_at = utcnow()

        self.invalidate_account(account_id)
        return conversation_to_out(conversation)

    @storage_guard("conversations.add_message")
    def add_message(
        self, db: Session, conversation_id: UUID, account_id: str, fields: MessageCreate
    ) -> MessageOut:
        """Append a message and bump the conversation's last activity.

        Raises:
            NotFoundError(E_CONVERSATION_NOT_FOUND): Missing or owned by another account.
        """
        with transaction(db):
            conversation = get_conversation_for_owner_or_404(db, account_id, conversation_id)
            message = append_message(
                db,
                conversation,
                role=fields.role,
                content=fields.content,
                timestamp=fields.timestamp,
                metadata=fields.metadata,
            )

        self.invalidate_account(account_id)
        return message_to_out(message)

    @storage_guard("conversations.archive")
    def archive(self, db: Session, conversation_id: UUID, account_id: str) -> None:
        with transaction(db):
            conversation = get_conversation_for_owner_or_404(db, account_id, conversation_id)
            conversation.is_archived = True
            conversation.updated_at = utcnow()

        self.invalidate_account(account_id)

    @storage_guard("conversations.delete")
    def delete(self, db: Session, conversation_id: UUID, account_id: str) -> None:
        """Hard-delete a conversation. Messages go with it via FK CASCADE."""
        with transaction(db):
            get_conversation_for_owner_or_404(db, account_id, conversation_id)
            db.execute(
                delete(Conversation)
                .where(Conversation.id == conversation_id)
                .execution_options(synchronize_session="fetch")
            )

        self.invalidate_account(account_id)

    @storage_guard("conversations.archive_inactive")
    def archive_inactive(self, db: Session, account_id: str, days_old: int) -> int:
        """Archive the account's conversations idle for more than days_old days."""
        cutoff = utcnow() - timedelta(days=days_old)
        with transaction(db):
            result = db.execute(
                update(Conversation)
                .where(
                    Conversation.owner_id == account_id,
                    Conversation.is_archived.is_(False),
                    Conversation.last_activity < cutoff,
                )
                .values(is_archived=True, updated_at=utcnow())
                .execution_options(synchronize_session="fetch")
            )
            archived = result.rowcount or 0

        self.invalidate_account(account_id)
        if archived:
            logger.info("conversations_archived", count=archived, days_old=days_old)
        return archived

    @storage_guard("conversations.export")
    def export(self, db: Session, account_id: str, include_archived: bool = True) -> dict[str, Any]:
        """Serialisable snapshot of the account's conversations and messages.

        The same document shape is used for backups and is accepted back by
        migration (its "conversations" key).
        """
        stmt = select(Conversation).where(Conversation.owner_id == account_id)
        if not include_archived:
            stmt = stmt.where(Conversation.is_archived.is_(False))
        conversations = db.scalars(
            stmt.order_by(Conversation.created_at.asc(), Conversation.id.asc())
        ).all()

        exported = []
        message_total = 0
        for conversation in conversations:
            messages = list_messages(db, conversation.id)
            message_total += len(messages)
            exported.append(
                {
                    "id": str(conversation.id),
                    "title": conversation.title,
                    "mode": conversation.mode,
                    "isArchived": conversation.is_archived,
                    "lastActivity": conversation.last_activity.isoformat(),
                    "createdAt": conversation.created_at.isoformat(),
                    "metadata": dict(conversation.meta or {}),
                    "messages": [
                        {
                            "id": str(m.id),
                            "type": m.role,
                            "content": m.content,
                            "timestamp": m.timestamp.isoformat(),
                            "metadata": dict(m.meta or {}),
                        }
                        for m in messages
                    ],
                }
            )

        return {
            "version": EXPORT_VERSION,
            "exported_at": utcnow().isoformat(),
            "account_id": account_id,
            "conversation_count": len(exported),
            "message_count": message_total,
            "conversations": exported,
        }

    def invalidate_account(self, *account_ids: str) -> None:
        self.cache.invalidate_many(conversation_list_key(account_id) for account_id in account_ids)
