"""Team roster routes. Every route is scoped to the viewer's own roster."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from teamcoach.api.deps import get_db, get_stores
from teamcoach.auth.middleware import Viewer, get_viewer
from teamcoach.responses import success_response
from teamcoach.schemas.team import TeamMemberCreate, TeamMemberUpdate
from teamcoach.stores import Stores

router = APIRouter(tags=["team"])


@router.get("/team-members")
def list_team_members(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    members = stores.team_members.list_members(db, viewer.account_id)
    return success_response([m.model_dump(mode="json") for m in members])


@router.post("/team-members", status_code=201)
def create_team_member(
    body: TeamMemberCreate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    """Add a member to the viewer's team.

    Errors:
        E_TEAM_MEMBER_EXISTS (409): The viewer already has a member with this name.
    """
    member = stores.team_members.create(db, viewer.account_id, body)
    return success_response(member.model_dump(mode="json"))


@router.patch("/team-members/{member_id}")
def update_team_member(
    member_id: UUID,
    body: TeamMemberUpdate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> dict:
    member = stores.team_members.update(db, viewer.account_id, member_id, body)
    return success_response(member.model_dump(mode="json"))


@router.delete("/team-members/{member_id}", status_code=204)
def delete_team_member(
    member_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    stores: Annotated[Stores, Depends(get_stores)],
) -> Response:
    stores.team_members.delete(db, viewer.account_id, member_id)
    return Response(status_code=204)
