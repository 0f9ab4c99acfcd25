"""Local history migration, recovery and backup routes.

Registered before the conversations router: these static paths share the
/conversations prefix with /conversations/{conversation_id}.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from teamcoach.api.deps import get_db, get_stores
from teamcoach.auth.middleware import Viewer, get_viewer
from teamcoach.db.models import BackupSource
from teamcoach.responses import success_response
from teamcoach.schemas.migration import MigrateRequest
from teamcoach.stores import Stores

router = APIRouter(tags=["migration"])


@router.post("/conversations/migrate")
def migrate_local_history(
    body: MigrateRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    """Import browser-held history. Safe to repeat: imported entries are skipped.

    Errors:
        E_INVALID_LOCAL_HISTORY (400): Body is not a readable history document.
        E_PAYLOAD_TOO_LARGE (413): History exceeds the configured size limit.
    """
    result = stores.migration.migrate(db, viewer.account_id, body.local_history)
    return success_response(result.model_dump(mode="json"))


@router.get("/conversations/migration-state")
def get_migration_state(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    state = stores.migration.get_state(db, viewer.account_id)
    return success_response({"state": state.value})


@router.post("/conversations/recover")
def recover_local_history(
    body: MigrateRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    """Salvage corrupted history. An unrecoverable payload is not an error."""
    result = stores.migration.recover_corrupted(db, viewer.account_id, body.local_history)
    return success_response(result.model_dump(mode="json"))


@router.get("/conversations/backups")
def list_backups(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    backups = stores.backups.list_backups(db, viewer.account_id)
    return success_response([b.model_dump(mode="json") for b in backups])


@router.post("/conversations/backups", status_code=201)
def create_backup(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    backup = stores.backups.create_backup(db, viewer.account_id, BackupSource.manual)
    return success_response(backup.model_dump(mode="json"))


@router.post("/conversations/backups/{backup_id}/restore")
def restore_backup(
    backup_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    """Restore a backup as new conversations.

    Errors:
        E_BACKUP_NOT_FOUND (404): Missing or not owned by the viewer.
    """
    result = stores.backups.restore(db, backup_id, viewer.account_id)
    return success_response(result.model_dump(mode="json"))
