"""Import of client-held chat history into server-side conversations.

Each local conversation is identified by a dedup key: its client id, or a
content hash when the client never assigned one. The key is stored on the
imported conversation (conversations.local_id, unique per owner), so running
a migration twice imports nothing the second time.

Every conversation is written inside its own savepoint: a conversation that
fails to import is reported in the result and the rest of the batch still
commits.
"""

import hashlib
import json
import threading
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.orm import Session

from teamcoach.db.models import BackupSource, Conversation, utcnow
from teamcoach.db.session import storage_guard, transaction
from teamcoach.errors import ApiError, ApiErrorCode, InvalidRequestError
from teamcoach.logging import get_logger
from teamcoach.schemas.migration import (
    LocalConversation,
    LocalMessage,
    MigrationItemFailure,
    MigrationResult,
    MigrationState,
    RecoveryResult,
)
from teamcoach.services.backups import insert_backup
from teamcoach.services.conversations import (
    EXPORT_VERSION,
    ConversationStore,
    append_message,
    insert_conversation,
)
from teamcoach.services.local_history import (
    LocalHistoryFormatError,
    extract_items,
    salvage,
)

logger = get_logger(__name__)

MIGRATED_FROM = "local_storage"
LOCAL_ID_CONSTRAINT = "uix_conversations_owner_local_id"


def dedup_key(conversation: LocalConversation) -> str:
    """Stable identity of a local conversation across repeated imports."""
    if conversation.id:
        return conversation.id
    digest = hashlib.sha256(
        json.dumps(
            {"title": conversation.title, "messages": conversation.messages},
            sort_keys=True,
            default=str,
        ).encode("utf-8")
    ).hexdigest()
    return f"sha256:{digest}"


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _is_local_id_conflict(error: IntegrityError) -> bool:
    return LOCAL_ID_CONSTRAINT in str(error.orig) or "local_id" in str(error.orig)


def validate_items(items: list[Any]) -> tuple[list[LocalConversation], list[MigrationItemFailure]]:
    """Validate each entry independently; invalid entries become failures."""
    conversations: list[LocalConversation] = []
    failures: list[MigrationItemFailure] = []
    for index, item in enumerate(items):
        try:
            conversations.append(LocalConversation.model_validate(item))
        except ValidationError as e:
            local_id = item.get("id") if isinstance(item, dict) else None
            failures.append(
                MigrationItemFailure(
                    index=index,
                    local_id=str(local_id) if local_id is not None else None,
                    reason=f"invalid conversation: {e.error_count()} validation error(s)",
                )
            )
    return conversations, failures


class MigrationService:
    """Imports local history and salvages corrupted copies of it."""

    def __init__(
        self,
        conversations: ConversationStore,
        max_payload_bytes: int = 5 * 1024 * 1024,
        corruption_sample_chars: int = 1000,
    ):
        self.conversations = conversations
        self.max_payload_bytes = max_payload_bytes
        self.corruption_sample_chars = corruption_sample_chars
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Parsing
    # -------------------------------------------------------------------------

    def check_size(self, raw: str) -> None:
        if len(raw.encode("utf-8")) > self.max_payload_bytes:
            raise ApiError(
                ApiErrorCode.E_PAYLOAD_TOO_LARGE,
                f"Local history exceeds {self.max_payload_bytes} bytes",
            )

    def parse_local_history(
        self, raw: str
    ) -> tuple[list[LocalConversation], list[MigrationItemFailure]]:
        """Parse raw history into validated conversations plus per-entry failures.

        Raises:
            InvalidRequestError(E_INVALID_LOCAL_HISTORY): Not JSON, or not a
                list of conversations.
            ApiError(E_PAYLOAD_TOO_LARGE): Over the configured size limit.
        """
        return validate_items(self._load_items(raw))

    def _load_items(self, raw: str) -> list[Any]:
        self.check_size(raw)
        try:
            return extract_items(json.loads(raw))
        except (json.JSONDecodeError, LocalHistoryFormatError) as e:
            raise InvalidRequestError(
                ApiErrorCode.E_INVALID_LOCAL_HISTORY, f"Local history is not readable: {e}"
            ) from None

    # -------------------------------------------------------------------------
    # Migration
    # -------------------------------------------------------------------------

    def migrate(self, db: Session, account_id: str, raw: str) -> MigrationResult:
        """Import raw local history for an account.

        Raises:
            InvalidRequestError(E_INVALID_LOCAL_HISTORY): Unparseable history.
            ApiError(E_PAYLOAD_TOO_LARGE): Over the configured size limit.
        """
        items = self._load_items(raw)
        conversations, failures = validate_items(items)
        return self.import_conversations(db, account_id, conversations, failures, raw_items=items)

    @storage_guard("migration.import")
    def import_conversations(
        self,
        db: Session,
        account_id: str,
        conversations: list[LocalConversation],
        failures: list[MigrationItemFailure] | None = None,
        raw_items: list[Any] | None = None,
    ) -> MigrationResult:
        """Import already validated conversations. Shared by migrate and recovery."""
        result = MigrationResult(failures=list(failures or []))

        with self._lock:
            self._in_flight.add(account_id)
        try:
            with transaction(db):
                existing = set(
                    db.scalars(
                        select(Conversation.local_id).where(
                            Conversation.owner_id == account_id,
                            Conversation.local_id.is_not(None),
                        )
                    ).all()
                )

                pending: list[tuple[int, str, LocalConversation]] = []
                seen: set[str] = set()
                for index, conversation in enumerate(conversations):
                    key = dedup_key(conversation)
                    if key in existing or key in seen:
                        result.conversations_skipped += 1
                        continue
                    seen.add(key)
                    pending.append((index, key, conversation))

                if pending:
                    snapshot = raw_items
                    if snapshot is None:
                        snapshot = [c.model_dump(mode="json") for _, _, c in pending]
                    backup = insert_backup(
                        db,
                        account_id,
                        BackupSource.local_storage,
                        {"version": EXPORT_VERSION, "conversations": snapshot},
                        conversation_count=len(snapshot),
                        message_count=sum(
                            len(item.get("messages") or []) if isinstance(item, dict) else 0
                            for item in snapshot
                        ),
                    )
                    result.backup_id = backup.id

                for index, key, conversation in pending:
                    self._import_one(db, account_id, index, key, conversation, result)
        finally:
            with self._lock:
                self._in_flight.discard(account_id)

        self.conversations.invalidate_account(account_id)
        logger.info(
            "local_history_migrated",
            conversations_created=result.conversations_created,
            messages_created=result.messages_created,
            conversations_skipped=result.conversations_skipped,
            messages_skipped=result.messages_skipped,
            failures=len(result.failures),
        )
        return result

    def _import_one(
        self,
        db: Session,
        account_id: str,
        index: int,
        key: str,
        local: LocalConversation,
        result: MigrationResult,
    ) -> None:
        messages: list[LocalMessage] = []
        skipped = 0
        for raw_message in local.messages:
            try:
                messages.append(LocalMessage.model_validate(raw_message))
            except ValidationError:
                skipped += 1

        last_activity = _aware(local.last_activity)
        try:
            with db.begin_nested():
                conversation = insert_conversation(
                    db,
                    account_id,
                    local.title,
                    mode=local.mode,
                    metadata={
                        "migrated_from": MIGRATED_FROM,
                        "original_id": local.id,
                        "original_last_activity": (
                            last_activity.isoformat() if last_activity else None
                        ),
                    },
                    local_id=key,
                    last_activity=last_activity,
                )
                for message in messages:
                    append_message(
                        db,
                        conversation,
                        role=message.role,
                        content=message.content,
                        timestamp=message.timestamp,
                        metadata={"migrated_from": MIGRATED_FROM, "original_id": message.id},
                        bump_activity=last_activity is None,
                    )
        except IntegrityError as e:
            if _is_local_id_conflict(e):
                # A concurrent migration imported it first
                result.conversations_skipped += 1
                return
            result.failures.append(
                MigrationItemFailure(index=index, local_id=local.id, reason="constraint violation")
            )
            return
        except DataError:
            result.failures.append(
                MigrationItemFailure(index=index, local_id=local.id, reason="invalid data")
            )
            return

        result.conversations_created += 1
        result.messages_created += len(messages)
        result.messages_skipped += skipped

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @storage_guard("migration.state")
    def get_state(self, db: Session, account_id: str) -> MigrationState:
        with self._lock:
            if account_id in self._in_flight:
                return MigrationState.migrating
        migrated = db.scalar(
            select(Conversation.id)
            .where(Conversation.owner_id == account_id, Conversation.local_id.is_not(None))
            .limit(1)
        )
        return MigrationState.migrated if migrated is not None else MigrationState.not_migrated

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    def recover_corrupted(self, db: Session, account_id: str, partial: str) -> RecoveryResult:
        """Salvage what can be read from corrupted history and import it.

        When nothing is salvageable a corruption report (a sample of the
        input) is stored as a backup and a zero result is returned.
        """
        self.check_size(partial)
        salvaged = salvage(partial)
        if salvaged is not None:
            conversations, failures = validate_items(salvaged.items)
            if conversations:
                migration = self.import_conversations(
                    db, account_id, conversations, failures, raw_items=salvaged.items
                )
                logger.info(
                    "local_history_recovered",
                    strategy=salvaged.strategy,
                    recovered_items=len(conversations),
                )
                return RecoveryResult(
                    strategy=salvaged.strategy,
                    recovered_items=len(conversations),
                    migration=migration,
                )

        report_id = self._write_corruption_report(db, account_id, partial)
        logger.warning("local_history_unrecoverable", input_chars=len(partial))
        return RecoveryResult(corruption_backup_id=report_id)

    @storage_guard("migration.corruption_report")
    def _write_corruption_report(self, db: Session, account_id: str, partial: str):
        with transaction(db):
            backup = insert_backup(
                db,
                account_id,
                BackupSource.corruption_report,
                {
                    "partial_data": partial[: self.corruption_sample_chars],
                    "original_length": len(partial),
                    "timestamp": utcnow().isoformat(),
                },
                conversation_count=0,
                message_count=0,
            )
        return backup.id
