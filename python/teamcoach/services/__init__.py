"""Data-access stores and the services built on them.

Stores are plain objects constructed with their cache; build_stores() in
teamcoach.stores wires one of each for an application instance.
"""

from teamcoach.services.accounts import AccountStore
from teamcoach.services.backups import BackupStore
from teamcoach.services.conversations import ConversationStore
from teamcoach.services.identity import IdentityReconciler, choose_survivor, merge_account_fields
from teamcoach.services.migration import MigrationService
from teamcoach.services.team_members import TeamMemberStore

__all__ = [
    "AccountStore",
    "BackupStore",
    "ConversationStore",
    "IdentityReconciler",
    "MigrationService",
    "TeamMemberStore",
    "choose_survivor",
    "merge_account_fields",
]
