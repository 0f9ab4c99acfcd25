"""Account store: durable account CRUD fronted by a TTL cache.

Cache layout (one TTLCache per store instance):
    account:{id}        -> AccountOut
    subject:{subject}   -> account id

Reads check the cache first and fill it from the database on a miss.
Every mutation invalidates the affected keys after it commits and before
it returns, so a caller never sees a pre-mutation value once the mutating
call has returned.

Deletion is a soft delete (deleted_at). Accounts are only hard-deleted as
the losing side of a merge, which the identity reconciler performs.
"""

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from teamcoach.cache import TTLCache
from teamcoach.db.models import Account, utcnow
from teamcoach.db.session import storage_guard, transaction
from teamcoach.errors import ApiErrorCode, DuplicateEmailError, NotFoundError
from teamcoach.logging import get_logger
from teamcoach.schemas.account import (
    AccountCreate,
    AccountOut,
    AccountUpdate,
    OnboardingRequest,
    normalize_email,
)

logger = get_logger(__name__)


def account_key(account_id: str) -> str:
    return f"account:{account_id}"


def subject_key(subject_id: str) -> str:
    return f"subject:{subject_id}"


def account_to_out(account: Account) -> AccountOut:
    """Convert Account ORM model to AccountOut schema."""
    return AccountOut(
        id=account.id,
        subject_id=account.subject_id,
        email=account.email,
        first_name=account.first_name,
        last_name=account.last_name,
        profile_image_url=account.profile_image_url,
        is_admin=account.is_admin,
        has_completed_onboarding=account.has_completed_onboarding,
        top_strengths=tuple(account.top_strengths or ()),
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def get_active_account_row(db: Session, account_id: str) -> Account | None:
    """Load a non-deleted account row, bypassing the cache."""
    return db.scalar(
        select(Account).where(Account.id == account_id, Account.deleted_at.is_(None))
    )


def email_in_use(db: Session, email: str, exclude_id: str | None = None) -> bool:
    """Whether an active account other than exclude_id already has this email."""
    stmt = select(Account.id).where(Account.email == email, Account.deleted_at.is_(None))
    if exclude_id is not None:
        stmt = stmt.where(Account.id != exclude_id)
    return db.scalar(stmt.limit(1)) is not None


class AccountStore:
    """Account CRUD with write-through invalidation."""

    def __init__(self, cache: TTLCache):
        self.cache = cache

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @storage_guard("accounts.get_by_id")
    def get_by_id(self, db: Session, account_id: str) -> AccountOut | None:
        key = account_key(account_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        epoch = self.cache.begin_fill()
        row = get_active_account_row(db, account_id)
        if row is None:
            return None
        account = account_to_out(row)
        self.cache.set(key, account, epoch=epoch)
        return account

    @storage_guard("accounts.get_by_subject")
    def get_by_subject(self, db: Session, subject_id: str) -> AccountOut | None:
        """Find the active account currently linked to an identity provider subject."""
        key = subject_key(subject_id)
        cached_id = self.cache.get(key)
        if cached_id is not None:
            account = self.get_by_id(db, cached_id)
            if account is not None and account.subject_id == subject_id:
                return account
            # Mapping outlived a rotation or merge
            self.cache.invalidate(key)

        epoch = self.cache.begin_fill()
        row = db.scalar(
            select(Account).where(Account.subject_id == subject_id, Account.deleted_at.is_(None))
        )
        if row is None:
            return None
        account = account_to_out(row)
        self.cache.set(account_key(account.id), account, epoch=epoch)
        self.cache.set(key, account.id, epoch=epoch)
        return account

    @storage_guard("accounts.get_by_email")
    def get_by_email(self, db: Session, email: str) -> AccountOut | None:
        """Case-insensitive lookup of the active account for an email."""
        epoch = self.cache.begin_fill()
        row = db.scalar(
            select(Account).where(
                Account.email == normalize_email(email), Account.deleted_at.is_(None)
            )
        )
        if row is None:
            return None
        account = account_to_out(row)
        self.cache.set(account_key(account.id), account, epoch=epoch)
        return account

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    @storage_guard("accounts.create")
    def create(self, db: Session, fields: AccountCreate) -> AccountOut:
        """Create an account.

        Raises:
            DuplicateEmailError: An active account already has this email.
        """
        if email_in_use(db, fields.email):
            raise DuplicateEmailError(fields.email)

        now = utcnow()
        row = Account(
            id=fields.id,
            subject_id=fields.subject_id,
            email=fields.email,
            first_name=fields.first_name,
            last_name=fields.last_name,
            profile_image_url=fields.profile_image_url,
            is_admin=False,
            has_completed_onboarding=False,
            top_strengths=[],
            created_at=now,
            updated_at=now,
        )
        try:
            with transaction(db):
                db.add(row)
                db.flush()
        except IntegrityError:
            # Lost a race against a concurrent create for the same email
            if email_in_use(db, fields.email):
                raise DuplicateEmailError(fields.email) from None
            raise

        self.invalidate(row.id, subject_ids=[row.subject_id])
        logger.info("account_created", account_id=row.id)
        return account_to_out(row)

    @storage_guard("accounts.update")
    def update(self, db: Session, account_id: str, fields: AccountUpdate) -> AccountOut:
        """Apply the explicitly-set fields of an update.

        Raises:
            NotFoundError(E_ACCOUNT_NOT_FOUND): No active account with this id.
            DuplicateEmailError: The new email belongs to another active account.
        """
        changes = fields.model_dump(exclude_unset=True)
        if changes.get("email") is None:
            changes.pop("email", None)

        with transaction(db):
            row = get_active_account_row(db, account_id)
            if row is None:
                raise NotFoundError(ApiErrorCode.E_ACCOUNT_NOT_FOUND, "Account not found")

            if "email" in changes and changes["email"] != row.email:
                if email_in_use(db, changes["email"], exclude_id=account_id):
                    raise DuplicateEmailError(changes["email"])

            for name, value in changes.items():
                setattr(row, name, value)
            row.updated_at = utcnow()
            try:
                db.flush()
            except IntegrityError:
                raise DuplicateEmailError(changes.get("email", row.email)) from None

        self.invalidate(account_id, subject_ids=[row.subject_id])
        return account_to_out(row)

    @storage_guard("accounts.delete")
    def delete(self, db: Session, account_id: str) -> None:
        """Soft-delete an account. Its data stays in place.

        Raises:
            NotFoundError(E_ACCOUNT_NOT_FOUND): No active account with this id.
        """
        with transaction(db):
            row = get_active_account_row(db, account_id)
            if row is None:
                raise NotFoundError(ApiErrorCode.E_ACCOUNT_NOT_FOUND, "Account not found")
            row.deleted_at = utcnow()
            row.updated_at = row.deleted_at

        self.invalidate(account_id, subject_ids=[row.subject_id])
        logger.info("account_deleted", account_id=account_id)

    def complete_onboarding(
        self, db: Session, account_id: str, request: OnboardingRequest
    ) -> AccountOut:
        """Mark onboarding complete and record the selected top strengths."""
        changes = {"has_completed_onboarding": True, "top_strengths": request.top_strengths}
        if request.first_name is not None:
            changes["first_name"] = request.first_name
        if request.last_name is not None:
            changes["last_name"] = request.last_name
        return self.update(db, account_id, AccountUpdate(**changes))

    def set_admin(self, db: Session, account_id: str, is_admin: bool) -> AccountOut:
        account = self.update(db, account_id, AccountUpdate(is_admin=is_admin))
        logger.info("account_admin_changed", account_id=account_id, is_admin=is_admin)
        return account

    # -------------------------------------------------------------------------
    # Cache control
    # -------------------------------------------------------------------------

    def invalidate(self, *account_ids: str, subject_ids: Iterable[str] = ()) -> None:
        """Drop cached entries for accounts mutated outside this store's methods."""
        self.cache.invalidate_many(account_key(account_id) for account_id in account_ids)
        self.cache.invalidate_many(subject_key(subject_id) for subject_id in subject_ids)
