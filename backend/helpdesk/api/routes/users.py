import math
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user, require_permission
from helpdesk.database import get_db
from helpdesk.models.role import SystemPermission
from helpdesk.schemas.common import PaginatedResponse
from helpdesk.schemas.user import (
    ChangePasswordRequest,
    SetPasswordRequest,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from helpdesk.services import user_service

router = APIRouter()

manage_users = require_permission(SystemPermission.manage_users)


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    current_user: CurrentUser = Depends(get_current_user),
):
    """Return the currently authenticated user's profile."""
    return current_user.user


@router.post("/me/password", status_code=status.HTTP_204_NO_CONTENT)
async def change_own_password(
    data: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Change the currently authenticated user's password."""
    await user_service.change_own_password(
        db, current_user.user, data.current_password, data.new_password
    )
    await db.commit()


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_users),
):
    """Create a new user. Requires the users permission."""
    user = await user_service.create_user(db, data, actor=current_user.user)
    await db.commit()
    return await user_service.get_user(db, user.id)


@router.get("/", response_model=PaginatedResponse[UserResponse])
async def list_users(
    search: str | None = Query(None),
    is_active: bool | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List users with pagination. Requires authentication."""
    users, total = await user_service.list_users(
        db, page=page, page_size=page_size, search=search, is_active=is_active
    )
    pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginatedResponse(
        items=users,
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get a user by ID. Requires authentication."""
    return await user_service.get_user(db, user_id)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    data: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_users),
):
    """Update a user. Requires the users permission."""
    user = await user_service.update_user(db, user_id, data, actor=current_user.user)
    await db.commit()
    return await user_service.get_user(db, user.id)


@router.post("/{user_id}/activate", response_model=UserResponse)
async def activate_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_users),
):
    user = await user_service.set_active(db, user_id, True, actor=current_user.user)
    await db.commit()
    return user


@router.post("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_users),
):
    user = await user_service.set_active(db, user_id, False, actor=current_user.user)
    await db.commit()
    return user


@router.post("/{user_id}/password", status_code=status.HTTP_204_NO_CONTENT)
async def reset_password(
    user_id: UUID,
    data: SetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_users),
):
    """Set a new password for another user."""
    await user_service.reset_password(db, user_id, data.new_password)
    await db.commit()
