"""Sequence assignment helper for message ordering.

Each conversation has a ``next_seq`` counter (starts at 1). Assignment locks
the conversation row (SELECT ... FOR UPDATE on PostgreSQL), reads next_seq,
increments it, and returns the value read. The same lock serialises the
timestamp check in next_message_timestamp so concurrent appends cannot
produce out-of-order timestamps.

Both helpers MUST be called within an existing transaction. They do not
open or commit their own.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from teamcoach.db.models import Conversation, Message, utcnow
from teamcoach.logging import get_logger

logger = get_logger(__name__)

# Smallest step the database timestamp type can represent on every backend
TIMESTAMP_RESOLUTION = timedelta(microseconds=1)


def assign_next_message_seq(db: Session, conversation_id: UUID) -> int:
    """Atomically assign the next message sequence number for a conversation.

    Raises:
        ValueError: If the conversation does not exist
    """
    current_seq = db.scalar(
        select(Conversation.next_seq).where(Conversation.id == conversation_id).with_for_update()
    )
    if current_seq is None:
        raise ValueError(f"Conversation {conversation_id} not found")

    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(next_seq=Conversation.next_seq + 1, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )

    logger.debug(
        "assigned_message_seq",
        conversation_id=str(conversation_id),
        seq=current_seq,
    )
    return current_seq


def next_message_timestamp(
    db: Session, conversation_id: UUID, requested: datetime | None = None
) -> datetime:
    """Return a timestamp strictly greater than the conversation's latest message.

    ``requested`` (or the current time) is used when it already satisfies
    that; otherwise the latest timestamp plus one microsecond.
    """
    candidate = requested or utcnow()
    if candidate.tzinfo is None:
        candidate = candidate.replace(tzinfo=UTC)
    latest = db.scalar(
        select(func.max(Message.timestamp)).where(Message.conversation_id == conversation_id)
    )
    if latest is not None and candidate <= latest:
        candidate = latest + TIMESTAMP_RESOLUTION
    return candidate
