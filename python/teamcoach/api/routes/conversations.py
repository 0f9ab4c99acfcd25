"""Conversations and Messages API routes.

Routes are transport-only: each calls exactly one store method.
All routes require authentication and are scoped to the viewer's account.

Static paths (/conversations/export, /conversations/archive-inactive) are
declared before /conversations/{conversation_id} so they are matched first.

Response envelope: {"data": ...}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Response
from sqlalchemy.orm import Session

from teamcoach.api.deps import get_db, get_stores
from teamcoach.auth.middleware import Viewer, get_viewer
from teamcoach.config import get_settings
from teamcoach.responses import success_response
from teamcoach.schemas.conversation import (
    ArchiveInactiveRequest,
    ConversationCreate,
    ConversationUpdate,
    MessageCreate,
)
from teamcoach.stores import Stores

router = APIRouter(tags=["conversations"])


# =============================================================================
# Collection Endpoints
# =============================================================================


@router.get("/conversations")
def list_conversations(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    """List the viewer's non-archived conversations, most recently active first."""
    conversations = stores.conversations.list_conversations(db, viewer.account_id)
    return success_response([c.model_dump(mode="json") for c in conversations])


@router.post("/conversations", status_code=201)
def create_conversation(
    body: ConversationCreate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    conversation = stores.conversations.create(db, viewer.account_id, body)
    return success_response(conversation.model_dump(mode="json"))


@router.get("/conversations/export")
def export_conversations(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
    include_archived: bool = Query(default=True),
) -> dict:
    """Download the viewer's conversations as an export document."""
    return success_response(
        stores.conversations.export(db, viewer.account_id, include_archived=include_archived)
    )


@router.post("/conversations/archive-inactive")
def archive_inactive_conversations(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
    body: Annotated[ArchiveInactiveRequest | None, Body()] = None,
) -> dict:
    """Archive conversations idle longer than days_old (default from settings)."""
    days_old = body.days_old if body and body.days_old else get_settings().inactive_archive_days
    archived = stores.conversations.archive_inactive(db, viewer.account_id, days_old)
    return success_response({"archived": archived, "days_old": days_old})


# =============================================================================
# Item Endpoints
# =============================================================================


@router.get("/conversations/{conversation_id}")
def get_conversation(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    """Get a conversation with its messages in chat order.

    Errors:
        E_CONVERSATION_NOT_FOUND (404): Missing or not owned by the viewer.
    """
    conversation = stores.conversations.get(db, conversation_id, viewer.account_id)
    return success_response(conversation.model_dump(mode="json"))


@router.patch("/conversations/{conversation_id}")
def update_conversation(
    conversation_id: UUID,
    body: ConversationUpdate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    conversation = stores.conversations.update(db, conversation_id, viewer.account_id, body)
    return success_response(conversation.model_dump(mode="json"))


@router.delete("/conversations/{conversation_id}", status_code=204)
def delete_conversation(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> Response:
    """Delete a conversation and all its messages."""
    stores.conversations.delete(db, conversation_id, viewer.account_id)
    return Response(status_code=204)


@router.post("/conversations/{conversation_id}/archive", status_code=204)
def archive_conversation(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> Response:
    stores.conversations.archive(db, conversation_id, viewer.account_id)
    return Response(status_code=204)


@router.post("/conversations/{conversation_id}/messages", status_code=201)
def add_message(
    conversation_id: UUID,
    body: MessageCreate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    """Append a message; it is ordered after every existing message."""
    message = stores.conversations.add_message(db, conversation_id, viewer.account_id, body)
    return success_response(message.model_dump(mode="json"))
