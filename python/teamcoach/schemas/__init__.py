"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from teamcoach.schemas.account import (
    AccountCreate,
    AccountOut,
    AccountUpdate,
    AdminToggleRequest,
    EmailSubscriptionOut,
    EmailSubscriptionUpdate,
    IdentityClaim,
    OnboardingRequest,
)
from teamcoach.schemas.conversation import (
    ArchiveInactiveRequest,
    ConversationCreate,
    ConversationDetail,
    ConversationOut,
    ConversationUpdate,
    MessageCreate,
    MessageOut,
)
from teamcoach.schemas.migration import (
    BackupOut,
    LocalConversation,
    LocalMessage,
    MigrateRequest,
    MigrationItemFailure,
    MigrationResult,
    MigrationState,
    RecoveryResult,
    RestoreResult,
)
from teamcoach.schemas.team import TeamMemberCreate, TeamMemberOut, TeamMemberUpdate

__all__ = [
    # Account
    "AccountCreate",
    "AccountOut",
    "AccountUpdate",
    "AdminToggleRequest",
    "EmailSubscriptionOut",
    "EmailSubscriptionUpdate",
    "IdentityClaim",
    "OnboardingRequest",
    # Conversation
    "ArchiveInactiveRequest",
    "ConversationCreate",
    "ConversationDetail",
    "ConversationOut",
    "ConversationUpdate",
    "MessageCreate",
    "MessageOut",
    # Migration / backup
    "BackupOut",
    "LocalConversation",
    "LocalMessage",
    "MigrateRequest",
    "MigrationItemFailure",
    "MigrationResult",
    "MigrationState",
    "RecoveryResult",
    "RestoreResult",
    # Team
    "TeamMemberCreate",
    "TeamMemberOut",
    "TeamMemberUpdate",
]
