"""Email subscription preferences.

Subscriptions are the one entity with get-or-create semantics: reading the
preference for an account that has never had one provisions the default
(active) row instead of reporting it missing.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from teamcoach.db.models import EmailSubscription, EmailType, utcnow
from teamcoach.db.session import storage_guard, transaction
from teamcoach.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEZONE = "UTC"


def _find(db: Session, account_id: str, email_type: EmailType) -> EmailSubscription | None:
    return db.scalar(
        select(EmailSubscription).where(
            EmailSubscription.account_id == account_id,
            EmailSubscription.email_type == email_type.value,
        )
    )


@storage_guard("email_subscriptions.ensure")
def ensure_subscription(
    db: Session, account_id: str, email_type: EmailType, timezone: str = DEFAULT_TIMEZONE
) -> EmailSubscription:
    """Return the account's subscription for email_type, creating it if absent.

    Race-safe: a concurrent insert loses on the unique (account, type)
    constraint and re-reads the winner's row.
    """
    existing = _find(db, account_id, email_type)
    if existing is not None:
        return existing

    now = utcnow()
    subscription = EmailSubscription(
        account_id=account_id,
        email_type=email_type.value,
        is_active=True,
        timezone=timezone,
        created_at=now,
        updated_at=now,
    )
    try:
        with transaction(db):
            db.add(subscription)
            db.flush()
    except IntegrityError:
        existing = _find(db, account_id, email_type)
        if existing is None:
            raise
        return existing

    logger.info("email_subscription_created", email_type=email_type.value)
    return subscription


@storage_guard("email_subscriptions.set_active")
def set_subscription_active(
    db: Session, account_id: str, email_type: EmailType, is_active: bool
) -> EmailSubscription:
    subscription = ensure_subscription(db, account_id, email_type)
    with transaction(db):
        subscription.is_active = is_active
        subscription.updated_at = utcnow()
    return subscription


def repoint_subscriptions(db: Session, from_account_id: str, to_account_id: str) -> int:
    """Move subscriptions to another account inside the caller's transaction.

    When both accounts have a row for the same type, the target's row is kept
    and the source's is dropped. Returns the number of rows moved.
    """
    kept_types = set(
        db.scalars(
            select(EmailSubscription.email_type).where(
                EmailSubscription.account_id == to_account_id
            )
        ).all()
    )
    moved = 0
    for subscription in db.scalars(
        select(EmailSubscription).where(EmailSubscription.account_id == from_account_id)
    ).all():
        if subscription.email_type in kept_types:
            db.delete(subscription)
        else:
            subscription.account_id = to_account_id
            moved += 1
    db.flush()
    return moved
