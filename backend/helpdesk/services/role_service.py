from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.exceptions import (
    BusinessError,
    ConflictError,
    NotFoundError,
    UnsupportedPermissionError,
    ValidationFailed,
)
from helpdesk.models.role import BuiltInRole, BuiltInSystemPermission, Role, SystemPermission, user_roles
from helpdesk.schemas.role import RoleCreate, RoleUpdate


def _combine_permissions(names: list[str]) -> SystemPermission:
    try:
        return BuiltInSystemPermission.combine(*names)
    except UnsupportedPermissionError as exc:
        raise ValidationFailed.single("permissions", f"Unknown permission: {exc}")


async def list_roles(db: AsyncSession) -> list[Role]:
    result = await db.execute(select(Role).order_by(Role.label))
    return list(result.scalars().all())


async def get_role(db: AsyncSession, role_id: UUID) -> Role:
    result = await db.execute(select(Role).where(Role.id == role_id))
    role = result.scalar_one_or_none()
    if role is None:
        raise NotFoundError("Role", role_id)
    return role


async def get_role_by_developer_name(db: AsyncSession, developer_name: str) -> Role | None:
    result = await db.execute(select(Role).where(Role.developer_name == developer_name))
    return result.scalar_one_or_none()


async def create_role(db: AsyncSession, data: RoleCreate) -> Role:
    if await get_role_by_developer_name(db, data.developer_name):
        raise ConflictError(f"A role with developer name '{data.developer_name}' already exists")
    role = Role(
        label=data.label,
        developer_name=data.developer_name,
        permissions=int(_combine_permissions(data.permissions)),
    )
    db.add(role)
    await db.flush()
    return role


async def update_role(db: AsyncSession, role_id: UUID, data: RoleUpdate) -> Role:
    """Update label and permissions. Built-in roles keep their developer name."""
    role = await get_role(db, role_id)
    if data.label is not None:
        role.label = data.label
    if data.permissions is not None:
        role.permissions = int(_combine_permissions(data.permissions))
    await db.flush()
    return role


async def delete_role(db: AsyncSession, role_id: UUID) -> None:
    role = await get_role(db, role_id)
    if role.is_built_in:
        raise BusinessError("Built-in roles cannot be deleted")
    in_use = await db.execute(
        select(func.count()).select_from(user_roles).where(user_roles.c.role_id == role.id)
    )
    if in_use.scalar_one() > 0:
        raise BusinessError("Role is assigned to one or more users and cannot be deleted")
    await db.delete(role)
    await db.flush()


async def ensure_built_in_roles(db: AsyncSession) -> dict[str, Role]:
    """Create any missing built-in roles. Returns all built-in roles by developer name."""
    roles: dict[str, Role] = {}
    for built_in in BuiltInRole.all():
        role = await get_role_by_developer_name(db, built_in.developer_name)
        if role is None:
            role = Role(
                label=built_in.default_label,
                developer_name=built_in.developer_name,
                permissions=int(built_in.default_permission),
            )
            db.add(role)
        roles[built_in.developer_name] = role
    await db.flush()
    return roles
