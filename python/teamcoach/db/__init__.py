"""Database module for teamcoach.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from teamcoach.db.engine import create_db_engine, get_engine
from teamcoach.db.models import (
    Account,
    BackupSource,
    Base,
    Conversation,
    ConversationBackup,
    ConversationMode,
    EmailSubscription,
    EmailType,
    Message,
    MessageRole,
    TeamMember,
)
from teamcoach.db.session import get_db, storage_guard, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "storage_guard",
    "transaction",
    # Base
    "Base",
    # Enums
    "BackupSource",
    "ConversationMode",
    "EmailType",
    "MessageRole",
    # Models
    "Account",
    "TeamMember",
    "Conversation",
    "Message",
    "ConversationBackup",
    "EmailSubscription",
]
