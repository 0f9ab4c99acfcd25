"""Scheduled automatic backups.

Snapshots every active account that has at least one conversation. Backups
only add rows to conversation_backups and never change cached entities, so
this is safe to run outside the API process.
"""

from sqlalchemy import exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from teamcoach.celery import celery_app
from teamcoach.config import get_settings
from teamcoach.db.models import Account, BackupSource, Conversation
from teamcoach.db.session import get_session_factory
from teamcoach.errors import ApiError
from teamcoach.logging import clear_task_context, configure_task_logging, get_logger
from teamcoach.stores import build_stores

logger = get_logger(__name__)


def accounts_needing_backup(db: Session) -> list[str]:
    """Ids of active accounts with at least one conversation, in id order."""
    has_conversation = exists().where(Conversation.owner_id == Account.id)
    return list(
        db.scalars(
            select(Account.id)
            .where(Account.deleted_at.is_(None), has_conversation)
            .order_by(Account.id)
        ).all()
    )


def run_automatic_backups(db: Session, backups) -> dict:
    """Back up every eligible account. One account failing does not stop the rest."""
    created = 0
    failed = 0
    for account_id in accounts_needing_backup(db):
        try:
            backups.create_backup(db, account_id, BackupSource.automatic)
            created += 1
        except ApiError as e:
            db.rollback()
            failed += 1
            logger.warning("automatic_backup_failed", account_id=account_id, code=e.code.value)
        except SQLAlchemyError as e:
            db.rollback()
            failed += 1
            logger.warning(
                "automatic_backup_failed", account_id=account_id, error_type=type(e).__name__
            )
    return {"created": created, "failed": failed}


@celery_app.task(bind=True, max_retries=0, name="create_automatic_backups")
def create_automatic_backups(self, request_id: str | None = None) -> dict:
    configure_task_logging(
        request_id=request_id, task_name="create_automatic_backups", task_id=self.request.id
    )
    logger.info("automatic_backups_started")

    stores = build_stores(get_settings())
    db = get_session_factory()()
    try:
        result = run_automatic_backups(db, stores.backups)
        logger.info("automatic_backups_completed", **result)
        return result
    except Exception as e:
        logger.error("automatic_backups_failed", error=str(e))
        raise
    finally:
        db.close()
        clear_task_context()
