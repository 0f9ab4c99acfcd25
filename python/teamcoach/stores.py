"""Wiring of caches, stores and services for one application instance.

Each store gets its own TTLCache. Nothing here is a module-level singleton:
the API builds one Stores in its lifespan and tests build their own.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

from teamcoach.cache import CacheSweeper, TTLCache
from teamcoach.config import Settings
from teamcoach.services.accounts import AccountStore
from teamcoach.services.backups import BackupStore
from teamcoach.services.conversations import ConversationStore
from teamcoach.services.identity import IdentityReconciler
from teamcoach.services.migration import MigrationService
from teamcoach.services.team_members import TeamMemberStore


@dataclass
class Stores:
    accounts: AccountStore
    team_members: TeamMemberStore
    conversations: ConversationStore
    backups: BackupStore
    migration: MigrationService
    identity: IdentityReconciler
    sweeper: CacheSweeper | None

    @property
    def caches(self) -> list[TTLCache]:
        return [self.accounts.cache, self.team_members.cache, self.conversations.cache]


def build_stores(settings: Settings, clock: Callable[[], float] = time.monotonic) -> Stores:
    """Construct every store with caches sized from settings."""

    def make_cache(name: str) -> TTLCache:
        return TTLCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
            clock=clock,
            name=name,
        )

    accounts = AccountStore(make_cache("accounts"))
    team_members = TeamMemberStore(make_cache("team_members"))
    conversations = ConversationStore(make_cache("conversations"))
    backups = BackupStore(conversations)
    migration = MigrationService(
        conversations,
        max_payload_bytes=settings.max_local_history_bytes,
        corruption_sample_chars=settings.corruption_sample_chars,
    )
    identity = IdentityReconciler(accounts, team_members, conversations)
    # A zero interval disables the sweeper; expired entries still miss on read
    sweeper = None
    if settings.cache_sweep_interval_seconds > 0:
        sweeper = CacheSweeper(
            [accounts.cache, team_members.cache, conversations.cache],
            interval_seconds=settings.cache_sweep_interval_seconds,
        )
    return Stores(
        accounts=accounts,
        team_members=team_members,
        conversations=conversations,
        backups=backups,
        migration=migration,
        identity=identity,
        sweeper=sweeper,
    )
