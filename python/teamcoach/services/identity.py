"""Identity reconciliation: map an identity provider claim to exactly one account.

resolve(claim) runs on every authenticated request:

1. Fast path: the account linked to claim.subject_id already has claim.email.
   Served from the account cache.
2. Otherwise look the email up:
   - no account by email, none by subject: create one keyed by the subject
   - no account by email, one by subject: the person changed their email at
     the provider; move the account to the new email
   - account by email, none by subject: the provider rotated the subject id;
     link the new subject and refresh name/avatar only
   - account by email AND a different account by subject: merge the pair

The merge runs as one transaction with both rows locked. On a conflict
(unique violation, or the locked rows no longer match what was read)
resolution is retried exactly once from scratch. Any remaining failure,
including an unreachable database, becomes IdentityResolutionFailedError,
which the request layer reports as an authentication failure.
"""

from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from teamcoach.db.models import Account, Conversation, ConversationBackup, TeamMember, utcnow
from teamcoach.db.session import transaction
from teamcoach.errors import (
    DuplicateEmailError,
    IdentityResolutionFailedError,
    StorageUnavailableError,
)
from teamcoach.logging import get_logger
from teamcoach.schemas.account import AccountCreate, AccountOut, AccountUpdate, IdentityClaim
from teamcoach.services.accounts import AccountStore, account_to_out
from teamcoach.services.conversations import ConversationStore
from teamcoach.services.email_subscriptions import repoint_subscriptions
from teamcoach.services.team_members import TeamMemberStore

logger = get_logger(__name__)

MAX_ATTEMPTS = 2
MERGED_NAME_SUFFIX = " (merged)"


class ResolutionConflict(Exception):
    """Rows changed between the unlocked read and the locked re-check."""


@dataclass
class MergeReport:
    """What a merge moved from the removed account to the survivor."""

    survivor_id: str
    removed_id: str
    team_members_moved: int = 0
    team_members_renamed: int = 0
    conversations_moved: int = 0
    backups_moved: int = 0
    subscriptions_moved: int = 0


# =============================================================================
# Merge policy (pure functions)
# =============================================================================


def survivor_rank(account) -> tuple:
    """Sort key; the smallest key survives a merge.

    Admin beats onboarded beats neither; ties go to the earliest created
    account, then the smallest id so the order is total.
    """
    return (
        not account.is_admin,
        not account.has_completed_onboarding,
        account.created_at,
        account.id,
    )


def choose_survivor(a, b) -> tuple:
    """Return (survivor, other) for a duplicate pair."""
    if survivor_rank(b) < survivor_rank(a):
        return b, a
    return a, b


def merge_account_fields(survivor, other) -> dict:
    """Field values for the merged account.

    Survivor values win unless null or empty, then the other account's value
    is used. Admin and onboarding flags are OR-ed. created_at keeps the earliest.
    """
    return {
        "first_name": survivor.first_name if survivor.first_name is not None else other.first_name,
        "last_name": survivor.last_name if survivor.last_name is not None else other.last_name,
        "profile_image_url": (
            survivor.profile_image_url
            if survivor.profile_image_url is not None
            else other.profile_image_url
        ),
        "top_strengths": list(survivor.top_strengths or other.top_strengths or []),
        "is_admin": bool(survivor.is_admin or other.is_admin),
        "has_completed_onboarding": bool(
            survivor.has_completed_onboarding or other.has_completed_onboarding
        ),
        "created_at": min(survivor.created_at, other.created_at),
    }


def _unique_member_name(name: str, taken: set[str]) -> str:
    candidate = f"{name}{MERGED_NAME_SUFFIX}"
    n = 2
    while candidate in taken:
        candidate = f"{name}{MERGED_NAME_SUFFIX} {n}"
        n += 1
    return candidate


def repoint_account_data(db: Session, from_id: str, to_id: str) -> MergeReport:
    """Move every row owned by from_id to to_id inside the caller's transaction.

    Team member name clashes are resolved by renaming the moved member.
    A moved conversation whose local import key clashes with one the target
    already has keeps its messages but drops the key.
    """
    report = MergeReport(survivor_id=to_id, removed_id=from_id)

    taken_names = set(
        db.scalars(select(TeamMember.name).where(TeamMember.manager_id == to_id)).all()
    )
    for member in db.scalars(select(TeamMember).where(TeamMember.manager_id == from_id)).all():
        if member.name in taken_names:
            member.name = _unique_member_name(member.name, taken_names)
            report.team_members_renamed += 1
        taken_names.add(member.name)
        member.manager_id = to_id
        member.updated_at = utcnow()
        report.team_members_moved += 1
    db.flush()

    target_local_ids = select(Conversation.local_id).where(
        Conversation.owner_id == to_id, Conversation.local_id.is_not(None)
    )
    db.execute(
        update(Conversation)
        .where(Conversation.owner_id == from_id, Conversation.local_id.in_(target_local_ids))
        .values(local_id=None)
        .execution_options(synchronize_session="fetch")
    )
    result = db.execute(
        update(Conversation)
        .where(Conversation.owner_id == from_id)
        .values(owner_id=to_id, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    report.conversations_moved = result.rowcount or 0

    result = db.execute(
        update(ConversationBackup)
        .where(ConversationBackup.owner_id == from_id)
        .values(owner_id=to_id)
        .execution_options(synchronize_session="fetch")
    )
    report.backups_moved = result.rowcount or 0

    report.subscriptions_moved = repoint_subscriptions(db, from_id, to_id)
    return report


# =============================================================================
# Reconciler
# =============================================================================


class IdentityReconciler:
    """Resolve identity claims to accounts, merging duplicates."""

    def __init__(
        self,
        accounts: AccountStore,
        team_members: TeamMemberStore,
        conversations: ConversationStore,
    ):
        self.accounts = accounts
        self.team_members = team_members
        self.conversations = conversations

    def resolve(self, db: Session, claim: IdentityClaim) -> AccountOut:
        """Return the single account for this claim.

        Raises:
            IdentityResolutionFailedError: Store unreachable, deleted account,
                or a conflict that survived one retry.
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return self._resolve_once(db, claim)
            except (IntegrityError, DuplicateEmailError, ResolutionConflict) as e:
                db.rollback()
                if attempt == MAX_ATTEMPTS:
                    logger.error(
                        "identity_resolution_conflict",
                        subject_id=claim.subject_id,
                        error_type=type(e).__name__,
                    )
                    raise IdentityResolutionFailedError() from e
                logger.info(
                    "identity_resolution_retry",
                    subject_id=claim.subject_id,
                    error_type=type(e).__name__,
                )
            except (StorageUnavailableError, SQLAlchemyError) as e:
                db.rollback()
                logger.error(
                    "identity_resolution_failed",
                    subject_id=claim.subject_id,
                    error_type=type(e).__name__,
                )
                raise IdentityResolutionFailedError() from e
        raise IdentityResolutionFailedError()  # pragma: no cover

    def _resolve_once(self, db: Session, claim: IdentityClaim) -> AccountOut:
        by_subject = self.accounts.get_by_subject(db, claim.subject_id)
        if by_subject is not None and by_subject.email == claim.email:
            return by_subject

        if by_subject is None and self._subject_is_deleted(db, claim.subject_id):
            logger.warning("identity_resolution_deleted_account", subject_id=claim.subject_id)
            raise IdentityResolutionFailedError("Account has been deleted")

        by_email = self.accounts.get_by_email(db, claim.email)

        if by_email is None:
            if by_subject is None:
                return self._create(db, claim)
            return self._change_email(db, by_subject, claim)

        if by_subject is None:
            return self._link_subject(db, by_email, claim)

        if by_subject.id == by_email.id:
            # Cached copy was stale; the email read is authoritative
            return by_email

        return self._merge(db, by_subject, by_email, claim)

    def _subject_is_deleted(self, db: Session, subject_id: str) -> bool:
        return (
            db.scalar(
                select(Account.id).where(
                    Account.subject_id == subject_id, Account.deleted_at.is_not(None)
                )
            )
            is not None
        )

    def _create(self, db: Session, claim: IdentityClaim) -> AccountOut:
        # The subject becomes the permanent id unless an older account already took it
        account_id = claim.subject_id
        if db.get(Account, account_id) is not None:
            account_id = str(uuid4())

        return self.accounts.create(
            db,
            AccountCreate(
                id=account_id,
                subject_id=claim.subject_id,
                email=claim.email,
                first_name=claim.first_name,
                last_name=claim.last_name,
                profile_image_url=claim.profile_image_url,
            ),
        )

    def _change_email(self, db: Session, account: AccountOut, claim: IdentityClaim) -> AccountOut:
        changes = {"email": claim.email}
        changes.update(_profile_changes(claim))
        updated = self.accounts.update(db, account.id, AccountUpdate(**changes))
        logger.info("account_email_changed", account_id=account.id)
        return updated

    def _link_subject(self, db: Session, account: AccountOut, claim: IdentityClaim) -> AccountOut:
        """Identifier rotation: same person, new provider subject.

        Only name and avatar are refreshed from the claim. Admin, onboarding
        and strengths change through explicit product actions only.
        """
        old_subject = account.subject_id
        with transaction(db):
            row = db.scalar(
                select(Account)
                .where(Account.id == account.id, Account.deleted_at.is_(None))
                .with_for_update()
            )
            if row is None or row.email != claim.email:
                raise ResolutionConflict(f"account {account.id} changed during rotation")
            row.subject_id = claim.subject_id
            for name, value in _profile_changes(claim).items():
                setattr(row, name, value)
            row.updated_at = utcnow()
            db.flush()

        self.accounts.invalidate(row.id, subject_ids=[old_subject, claim.subject_id])
        logger.info("identity_subject_rotated", account_id=row.id)
        return account_to_out(row)

    def _merge(
        self, db: Session, by_subject: AccountOut, by_email: AccountOut, claim: IdentityClaim
    ) -> AccountOut:
        """Collapse two accounts for one person into the higher-ranked one."""
        ids = sorted([by_subject.id, by_email.id])
        with transaction(db):
            # Lock in id order so concurrent merges of the same pair cannot deadlock
            locked = {
                row.id: row
                for row in db.scalars(
                    select(Account)
                    .where(Account.id.in_(ids), Account.deleted_at.is_(None))
                    .order_by(Account.id)
                    .with_for_update()
                ).all()
            }
            subject_row = locked.get(by_subject.id)
            email_row = locked.get(by_email.id)
            if (
                subject_row is None
                or email_row is None
                or subject_row.subject_id != claim.subject_id
                or email_row.email != claim.email
            ):
                raise ResolutionConflict("merge pair changed before lock")

            survivor, removed = choose_survivor(subject_row, email_row)
            merged = merge_account_fields(survivor, removed)
            removed_id = removed.id
            stale_subjects = [subject_row.subject_id, email_row.subject_id]

            report = repoint_account_data(db, removed_id, survivor.id)

            # Frees the email and subject slots before the survivor claims them
            db.delete(removed)
            db.flush()

            for name, value in merged.items():
                setattr(survivor, name, value)
            survivor.email = claim.email
            survivor.subject_id = claim.subject_id
            survivor.updated_at = utcnow()
            db.flush()

        self.accounts.invalidate(survivor.id, removed_id, subject_ids=stale_subjects)
        self.team_members.invalidate(survivor.id, removed_id)
        self.conversations.invalidate_account(survivor.id, removed_id)

        logger.info(
            "accounts_merged",
            survivor_id=report.survivor_id,
            removed_id=report.removed_id,
            team_members_moved=report.team_members_moved,
            team_members_renamed=report.team_members_renamed,
            conversations_moved=report.conversations_moved,
            backups_moved=report.backups_moved,
            subscriptions_moved=report.subscriptions_moved,
        )
        return account_to_out(survivor)


def _profile_changes(claim: IdentityClaim) -> dict:
    """Name and avatar fields the claim actually carries."""
    changes = {}
    if claim.first_name is not None:
        changes["first_name"] = claim.first_name
    if claim.last_name is not None:
        changes["last_name"] = claim.last_name
    if claim.profile_image_url is not None:
        changes["profile_image_url"] = claim.profile_image_url
    return changes
