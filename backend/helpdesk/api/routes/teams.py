import math
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user, require_permission
from helpdesk.database import get_db
from helpdesk.models.role import SystemPermission
from helpdesk.schemas.common import PaginatedResponse
from helpdesk.schemas.team import (
    TeamCreate,
    TeamDetailResponse,
    TeamMemberAdd,
    TeamMemberResponse,
    TeamMemberUpdate,
    TeamResponse,
    TeamUpdate,
)
from helpdesk.services import team_service

router = APIRouter()

manage_teams = require_permission(SystemPermission.manage_teams)


def _detail(team) -> TeamDetailResponse:
    members = [TeamMemberResponse(**team_service.member_to_dict(m)) for m in team.memberships]
    return TeamDetailResponse(
        id=team.id,
        name=team.name,
        description=team.description,
        round_robin_enabled=team.round_robin_enabled,
        member_count=len(members),
        created_at=team.created_at,
        updated_at=team.updated_at,
        members=members,
    )


@router.post("/", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    data: TeamCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_teams),
):
    """Create a new team. Requires the manage teams permission."""
    team = await team_service.create_team(db, data)
    await db.commit()
    return TeamResponse(
        id=team.id,
        name=team.name,
        description=team.description,
        round_robin_enabled=team.round_robin_enabled,
        member_count=0,
        created_at=team.created_at,
        updated_at=team.updated_at,
    )


@router.get("/", response_model=PaginatedResponse[TeamResponse])
async def list_teams(
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List all teams with pagination and member counts."""
    items, total = await team_service.list_teams(db, page=page, page_size=page_size, search=search)
    pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginatedResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/{team_id}", response_model=TeamDetailResponse)
async def get_team(
    team_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get a team with its members."""
    return _detail(await team_service.get_team(db, team_id))


@router.patch("/{team_id}", response_model=TeamDetailResponse)
async def update_team(
    team_id: UUID,
    data: TeamUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_teams),
):
    team = await team_service.update_team(db, team_id, data)
    await db.commit()
    return _detail(team)


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    team_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_teams),
):
    """Delete a team that owns no tickets."""
    await team_service.delete_team(db, team_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.post(
    "/{team_id}/members",
    response_model=TeamMemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    team_id: UUID,
    data: TeamMemberAdd,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_teams),
):
    """Add a user to a team."""
    membership = await team_service.add_member(db, team_id, data.user_id, data.is_assignable)
    response = TeamMemberResponse(**team_service.member_to_dict(membership))
    await db.commit()
    return response


@router.patch("/{team_id}/members/{user_id}", response_model=TeamMemberResponse)
async def update_member(
    team_id: UUID,
    user_id: UUID,
    data: TeamMemberUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_teams),
):
    """Change whether a member takes round-robin assignments."""
    membership = await team_service.update_member(db, team_id, user_id, data.is_assignable)
    response = TeamMemberResponse(**team_service.member_to_dict(membership))
    await db.commit()
    return response


@router.delete("/{team_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    team_id: UUID,
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_teams),
):
    """Remove a user from a team."""
    await team_service.remove_member(db, team_id, user_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
