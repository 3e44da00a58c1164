from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user, require_permission
from helpdesk.database import get_db
from helpdesk.models.role import BuiltInSystemPermission, SystemPermission
from helpdesk.schemas.role import PermissionResponse, RoleCreate, RoleResponse, RoleUpdate
from helpdesk.services import role_service

router = APIRouter()

manage_administrators = require_permission(SystemPermission.manage_administrators)


@router.get("/permissions", response_model=list[PermissionResponse])
async def list_permissions(
    current_user: CurrentUser = Depends(get_current_user),
):
    """List every permission a role can grant."""
    return [
        PermissionResponse(label=p.label, developer_name=p.developer_name, value=int(p.permission))
        for p in BuiltInSystemPermission.all()
    ]


@router.get("/", response_model=list[RoleResponse])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await role_service.list_roles(db)


@router.post("/", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    data: RoleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_administrators),
):
    role = await role_service.create_role(db, data)
    await db.commit()
    return role


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await role_service.get_role(db, role_id)


@router.patch("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: UUID,
    data: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_administrators),
):
    role = await role_service.update_role(db, role_id, data)
    await db.commit()
    return role


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(manage_administrators),
):
    """Delete a custom role. Built-in roles and roles in use are refused."""
    await role_service.delete_role(db, role_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
