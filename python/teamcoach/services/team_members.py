"""Team roster store.

Each manager's roster is cached as one list under team:{manager_id} and
invalidated by every roster mutation. A member belonging to another manager
is reported as not found.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from teamcoach.cache import TTLCache
from teamcoach.db.models import TeamMember, utcnow
from teamcoach.db.session import storage_guard, transaction
from teamcoach.errors import ApiErrorCode, ConflictError, NotFoundError
from teamcoach.logging import get_logger
from teamcoach.schemas.team import TeamMemberCreate, TeamMemberOut, TeamMemberUpdate

logger = get_logger(__name__)


def roster_key(manager_id: str) -> str:
    return f"team:{manager_id}"


def team_member_to_out(member: TeamMember) -> TeamMemberOut:
    """Convert TeamMember ORM model to TeamMemberOut schema."""
    return TeamMemberOut(
        id=member.id,
        manager_id=member.manager_id,
        name=member.name,
        strengths=list(member.strengths or []),
        created_at=member.created_at,
        updated_at=member.updated_at,
    )


def _duplicate_name(name: str) -> ConflictError:
    return ConflictError(
        ApiErrorCode.E_TEAM_MEMBER_EXISTS, f"A team member named '{name}' already exists"
    )


def get_member_for_manager_or_404(db: Session, manager_id: str, member_id: UUID) -> TeamMember:
    """Load a team member and verify it belongs to manager_id.

    Raises:
        NotFoundError(E_TEAM_MEMBER_NOT_FOUND): Missing or owned by someone else.
    """
    member = db.get(TeamMember, member_id)
    if member is None or member.manager_id != manager_id:
        raise NotFoundError(ApiErrorCode.E_TEAM_MEMBER_NOT_FOUND, "Team member not found")
    return member


def _name_taken(db: Session, manager_id: str, name: str, exclude_id: UUID | None = None) -> bool:
    stmt = select(TeamMember.id).where(TeamMember.manager_id == manager_id, TeamMember.name == name)
    if exclude_id is not None:
        stmt = stmt.where(TeamMember.id != exclude_id)
    return db.scalar(stmt.limit(1)) is not None


class TeamMemberStore:
    def __init__(self, cache: TTLCache):
        self.cache = cache

    @storage_guard("team_members.list")
    def list_members(self, db: Session, manager_id: str) -> list[TeamMemberOut]:
        """List a manager's team ordered by name."""
        key = roster_key(manager_id)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        epoch = self.cache.begin_fill()
        rows = db.scalars(
            select(TeamMember)
            .where(TeamMember.manager_id == manager_id)
            .order_by(TeamMember.name.asc(), TeamMember.id.asc())
        ).all()
        members = tuple(team_member_to_out(row) for row in rows)
        self.cache.set(key, members, epoch=epoch)
        return list(members)

    @storage_guard("team_members.create")
    def create(self, db: Session, manager_id: str, fields: TeamMemberCreate) -> TeamMemberOut:
        """Add a team member.

        Raises:
            ConflictError(E_TEAM_MEMBER_EXISTS): The manager already has a member with this name.
        """
        if _name_taken(db, manager_id, fields.name):
            raise _duplicate_name(fields.name)

        now = utcnow()
        member = TeamMember(
            manager_id=manager_id,
            name=fields.name,
            strengths=fields.strengths,
            created_at=now,
            updated_at=now,
        )
        try:
            with transaction(db):
                db.add(member)
                db.flush()
        except IntegrityError:
            raise _duplicate_name(fields.name) from None

        self.invalidate(manager_id)
        return team_member_to_out(member)

    @storage_guard("team_members.update")
    def update(
        self, db: Session, manager_id: str, member_id: UUID, fields: TeamMemberUpdate
    ) -> TeamMemberOut:
        changes = fields.model_dump(exclude_unset=True, exclude_none=True)
        try:
            with transaction(db):
                member = get_member_for_manager_or_404(db, manager_id, member_id)
                if "name" in changes and _name_taken(
                    db, manager_id, changes["name"], exclude_id=member_id
                ):
                    raise _duplicate_name(changes["name"])
                for name, value in changes.items():
                    setattr(member, name, value)
                member.updated_at = utcnow()
                db.flush()
        except IntegrityError:
            raise _duplicate_name(changes.get("name", "")) from None

        self.invalidate(manager_id)
        return team_member_to_out(member)

    @storage_guard("team_members.delete")
    def delete(self, db: Session, manager_id: str, member_id: UUID) -> None:
        with transaction(db):
            member = get_member_for_manager_or_404(db, manager_id, member_id)
            db.delete(member)

        self.invalidate(manager_id)

    def invalidate(self, *manager_ids: str) -> None:
        self.cache.invalidate_many(roster_key(manager_id) for manager_id in manager_ids)
