"""Admin-only account management."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from teamcoach.api.deps import get_db, get_stores, require_admin
from teamcoach.auth.middleware import Viewer
from teamcoach.responses import success_response
from teamcoach.schemas.account import AdminToggleRequest
from teamcoach.stores import Stores

router = APIRouter()


@router.put("/admin/accounts/{account_id}/admin")
def set_account_admin(
    account_id: str,
    body: AdminToggleRequest,
    viewer: Annotated[Viewer, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    """Grant or revoke admin on an account.

    Errors:
        E_FORBIDDEN (403): Viewer is not an admin.
        E_ACCOUNT_NOT_FOUND (404): No active account with this id.
    """
    account = stores.accounts.set_admin(db, account_id, body.is_admin)
    return success_response(account.model_dump(mode="json"))
