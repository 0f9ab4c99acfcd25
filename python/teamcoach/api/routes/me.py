"""Current account endpoints.

The viewer's account is resolved by the auth middleware on every request;
these routes read and update it through the account store.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from teamcoach.api.deps import get_db, get_stores
from teamcoach.auth.middleware import Viewer, get_viewer
from teamcoach.db.models import EmailType
from teamcoach.errors import ApiErrorCode, NotFoundError
from teamcoach.responses import success_response
from teamcoach.schemas.account import (
    EmailSubscriptionOut,
    EmailSubscriptionUpdate,
    OnboardingRequest,
)
from teamcoach.services.email_subscriptions import ensure_subscription, set_subscription_active
from teamcoach.stores import Stores

router = APIRouter()


@router.get("/me")
def get_me(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    """Get the authenticated account."""
    account = stores.accounts.get_by_id(db, viewer.account_id)
    if account is None:
        raise NotFoundError(ApiErrorCode.E_ACCOUNT_NOT_FOUND, "Account not found")
    return success_response(account.model_dump(mode="json"))


@router.post("/me/onboarding")
def complete_onboarding(
    body: OnboardingRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    """Record the viewer's top strengths and mark onboarding complete."""
    account = stores.accounts.complete_onboarding(db, viewer.account_id, body)
    ensure_subscription(db, viewer.account_id, EmailType.weekly_coaching)
    return success_response(account.model_dump(mode="json"))


@router.get("/me/email-subscriptions")
def list_email_subscriptions(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Every email type with the viewer's preference, provisioning defaults."""
    subscriptions = [ensure_subscription(db, viewer.account_id, t) for t in EmailType]
    return success_response(
        [EmailSubscriptionOut.model_validate(s).model_dump(mode="json") for s in subscriptions]
    )


@router.put("/me/email-subscriptions/{email_type}")
def update_email_subscription(
    email_type: EmailType,
    body: EmailSubscriptionUpdate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    subscription = set_subscription_active(db, viewer.account_id, email_type, body.is_active)
    out = EmailSubscriptionOut.model_validate(subscription)
    return success_response(out.model_dump(mode="json"))
