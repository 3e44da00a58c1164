import logging
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.exceptions import BusinessError, ConflictError, NotFoundError
from helpdesk.models.base import utcnow
from helpdesk.models.team import Team, TeamMembership
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import User
from helpdesk.schemas.team import TeamCreate, TeamUpdate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Round-robin
# ---------------------------------------------------------------------------


def pick_next_assignee(memberships: Iterable[TeamMembership]) -> TeamMembership | None:
    """Return the assignable, active member who was assigned least recently.

    Members that have never been assigned (``last_assigned_at`` is None) come
    first. ``membership.user`` must be loaded.
    """
    candidates = [m for m in memberships if m.is_assignable and m.user.is_active]
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda m: (m.last_assigned_at is not None, m.last_assigned_at or datetime.min),
    )


async def get_memberships(db: AsyncSession, team_id: UUID) -> list[TeamMembership]:
    result = await db.execute(
        select(TeamMembership)
        .where(TeamMembership.team_id == team_id)
        .options(selectinload(TeamMembership.user))
        .order_by(TeamMembership.created_at)
    )
    return list(result.scalars().all())


async def assign_round_robin(db: AsyncSession, team: Team) -> User | None:
    """Pick the next member of a round-robin team and stamp their assignment time."""
    if not team.round_robin_enabled:
        return None
    membership = pick_next_assignee(await get_memberships(db, team.id))
    if membership is None:
        logger.info("Team %s has no assignable members for round-robin", team.name)
        return None
    membership.last_assigned_at = utcnow()
    await db.flush()
    return membership.user


async def is_member(db: AsyncSession, team_id: UUID, user_id: UUID) -> bool:
    result = await db.execute(
        select(TeamMembership.id).where(
            TeamMembership.team_id == team_id,
            TeamMembership.user_id == user_id,
        )
    )
    return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def _check_name_available(db: AsyncSession, name: str, exclude_id: UUID | None = None) -> None:
    query = select(Team.id).where(func.lower(Team.name) == name.strip().lower())
    if exclude_id is not None:
        query = query.where(Team.id != exclude_id)
    result = await db.execute(query)
    if result.scalar_one_or_none():
        raise ConflictError("Team name already exists")


async def create_team(db: AsyncSession, data: TeamCreate) -> Team:
    """Create a new team. Raises 409 if the name is taken (case-insensitive)."""
    await _check_name_available(db, data.name)
    team = Team(
        name=data.name.strip(),
        description=data.description,
        round_robin_enabled=data.round_robin_enabled,
    )
    db.add(team)
    await db.flush()
    return team


async def get_team(db: AsyncSession, team_id: UUID) -> Team:
    """Get a team by ID with eager-loaded members. Raises 404 if not found."""
    result = await db.execute(
        select(Team)
        .where(Team.id == team_id)
        .options(selectinload(Team.memberships).selectinload(TeamMembership.user))
    )
    team = result.scalar_one_or_none()
    if not team:
        raise NotFoundError("Team", team_id)
    return team


async def list_teams(
    db: AsyncSession, page: int = 1, page_size: int = 50, search: str | None = None
) -> tuple[list[dict], int]:
    """Return paginated teams with member counts."""
    base = select(Team)
    if search:
        base = base.where(Team.name.ilike(f"%{search}%"))
    count_result = await db.execute(select(func.count()).select_from(base.subquery()))
    total = count_result.scalar() or 0

    member_count_sq = (
        select(
            TeamMembership.team_id,
            func.count().label("member_count"),
        )
        .group_by(TeamMembership.team_id)
        .subquery()
    )

    offset = (page - 1) * page_size
    query = (
        base.add_columns(func.coalesce(member_count_sq.c.member_count, 0).label("member_count"))
        .outerjoin(member_count_sq, Team.id == member_count_sq.c.team_id)
        .order_by(Team.name)
        .limit(page_size)
        .offset(offset)
    )
    result = await db.execute(query)

    items = [
        {
            "id": team.id,
            "name": team.name,
            "description": team.description,
            "round_robin_enabled": team.round_robin_enabled,
            "member_count": count,
            "created_at": team.created_at,
            "updated_at": team.updated_at,
        }
        for team, count in result.all()
    ]
    return items, total


async def update_team(db: AsyncSession, team_id: UUID, data: TeamUpdate) -> Team:
    """Partial update of a team. Only sets non-None fields. Raises 404 if not found."""
    team = await get_team(db, team_id)

    update_data = data.model_dump(exclude_none=True)
    if "name" in update_data:
        await _check_name_available(db, update_data["name"], exclude_id=team.id)
        update_data["name"] = update_data["name"].strip()
    for field, value in update_data.items():
        setattr(team, field, value)

    await db.flush()
    return team


async def delete_team(db: AsyncSession, team_id: UUID) -> None:
    """Delete a team that owns no open tickets."""
    team = await get_team(db, team_id)
    result = await db.execute(
        select(func.count()).select_from(Ticket).where(
            Ticket.owning_team_id == team.id, Ticket.is_deleted == False
        )
    )
    if result.scalar_one() > 0:
        raise BusinessError("Team still owns tickets and cannot be deleted")
    await db.delete(team)
    await db.flush()


def member_to_dict(membership: TeamMembership) -> dict:
    return {
        "user_id": membership.user_id,
        "username": membership.user.username,
        "full_name": membership.user.full_name,
        "is_active": membership.user.is_active,
        "is_assignable": membership.is_assignable,
        "last_assigned_at": membership.last_assigned_at,
        "joined_at": membership.created_at,
    }


async def add_member(
    db: AsyncSession, team_id: UUID, user_id: UUID, is_assignable: bool = True
) -> TeamMembership:
    """Add a user to a team. Raises 404 if team or user not found. Raises 409 if already a member."""
    result = await db.execute(select(Team.id).where(Team.id == team_id))
    if not result.scalar_one_or_none():
        raise NotFoundError("Team", team_id)

    result = await db.execute(select(User.id).where(User.id == user_id))
    if not result.scalar_one_or_none():
        raise NotFoundError("User", user_id)

    if await is_member(db, team_id, user_id):
        raise ConflictError("User is already a member of this team")

    membership = TeamMembership(
        team_id=team_id,
        user_id=user_id,
        is_assignable=is_assignable,
    )
    db.add(membership)
    await db.flush()
    return await _get_membership(db, team_id, user_id)


async def _get_membership(db: AsyncSession, team_id: UUID, user_id: UUID) -> TeamMembership:
    result = await db.execute(
        select(TeamMembership)
        .where(TeamMembership.team_id == team_id, TeamMembership.user_id == user_id)
        .options(selectinload(TeamMembership.user))
    )
    membership = result.scalar_one_or_none()
    if not membership:
        raise NotFoundError("Team membership")
    return membership


async def update_member(
    db: AsyncSession, team_id: UUID, user_id: UUID, is_assignable: bool
) -> TeamMembership:
    membership = await _get_membership(db, team_id, user_id)
    membership.is_assignable = is_assignable
    await db.flush()
    return membership


async def remove_member(db: AsyncSession, team_id: UUID, user_id: UUID) -> None:
    """Remove a user from a team. Raises 404 if membership not found."""
    membership = await _get_membership(db, team_id, user_id)
    await db.delete(membership)
    await db.flush()
