import logging
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.exceptions import BusinessError, ConflictError, ForbiddenError, NotFoundError
from helpdesk.models.base import utcnow
from helpdesk.models.role import Role, SystemPermission
from helpdesk.models.user import User
from helpdesk.schemas.user import UserCreate, UserUpdate
from helpdesk.services import auth_service

logger = logging.getLogger(__name__)


async def _load_roles(db: AsyncSession, role_ids: list[UUID]) -> list[Role]:
    if not role_ids:
        return []
    result = await db.execute(select(Role).where(Role.id.in_(role_ids)))
    roles = list(result.scalars().all())
    missing = set(role_ids) - {role.id for role in roles}
    if missing:
        raise NotFoundError("Role", sorted(str(m) for m in missing)[0])
    return roles


def _check_can_grant(actor: User | None) -> None:
    """Granting admin rights or roles needs the administrators permission."""
    if actor is not None and not actor.has_permission(SystemPermission.manage_administrators):
        raise ForbiddenError("Managing administrators requires the administrators permission")


async def create_user(db: AsyncSession, data: UserCreate, actor: User | None = None) -> User:
    """Create a new user. Raises 409 if username or email already exists."""
    if data.is_admin or data.role_ids:
        _check_can_grant(actor)

    result = await db.execute(select(User).where(func.lower(User.username) == data.username.lower()))
    if result.scalar_one_or_none():
        raise ConflictError("Username already exists")

    result = await db.execute(select(User).where(func.lower(User.email) == data.email.lower()))
    if result.scalar_one_or_none():
        raise ConflictError("Email already exists")

    roles = await _load_roles(db, data.role_ids)
    user = User(
        username=data.username,
        email=data.email,
        first_name=data.first_name,
        last_name=data.last_name,
        hashed_password=auth_service.hash_password(data.password),
        is_admin=data.is_admin,
        roles=roles,
    )
    db.add(user)
    await db.flush()
    logger.info("Created user %s", user.username)
    return user


async def get_user(db: AsyncSession, user_id: UUID) -> User:
    """Get a user by ID with roles loaded. Raises 404 if not found."""
    result = await db.execute(
        select(User).where(User.id == user_id).options(selectinload(User.roles))
    )
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User", user_id)
    return user


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    """Get a user by username (case-insensitive). Returns None if not found."""
    result = await db.execute(
        select(User)
        .where(func.lower(User.username) == username.lower())
        .options(selectinload(User.roles))
    )
    return result.scalar_one_or_none()


async def authenticate(db: AsyncSession, username: str, password: str) -> User | None:
    """Return the active user for the credentials and stamp the login time."""
    user = await get_user_by_username(db, username)
    if not user or not user.is_active:
        return None
    if not auth_service.verify_password(password, user.hashed_password):
        return None
    user.last_logged_in_at = utcnow()
    await db.flush()
    return user


async def list_users(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 25,
    search: str | None = None,
    is_active: bool | None = None,
) -> tuple[list[User], int]:
    """Return a paginated list of users and total count."""
    query = select(User)
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(
                User.username.ilike(pattern),
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
            )
        )
    if is_active is not None:
        query = query.where(User.is_active == is_active)

    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar_one()

    offset = (page - 1) * page_size
    result = await db.execute(
        query.options(selectinload(User.roles))
        .order_by(User.created_at)
        .offset(offset)
        .limit(page_size)
    )
    users = list(result.scalars().all())

    return users, total


async def update_user(
    db: AsyncSession, user_id: UUID, data: UserUpdate, actor: User | None = None
) -> User:
    """Partial update of a user. Only sets non-None fields. Raises 404 if not found."""
    user = await get_user(db, user_id)

    update_data = data.model_dump(exclude_none=True)
    role_ids = update_data.pop("role_ids", None)
    if "is_admin" in update_data and update_data["is_admin"] != user.is_admin:
        _check_can_grant(actor)
    if role_ids is not None:
        _check_can_grant(actor)
        user.roles = await _load_roles(db, role_ids)

    if actor is not None and actor.id == user.id and update_data.get("is_active") is False:
        raise BusinessError("You cannot deactivate your own account")

    if "email" in update_data and update_data["email"].lower() != user.email.lower():
        result = await db.execute(
            select(User).where(func.lower(User.email) == update_data["email"].lower(), User.id != user.id)
        )
        if result.scalar_one_or_none():
            raise ConflictError("Email already exists")

    for field, value in update_data.items():
        setattr(user, field, value)

    await db.flush()
    return user


async def set_active(db: AsyncSession, user_id: UUID, is_active: bool, actor: User | None = None) -> User:
    user = await get_user(db, user_id)
    if actor is not None and actor.id == user.id and not is_active:
        raise BusinessError("You cannot deactivate your own account")
    user.is_active = is_active
    await db.flush()
    return user


async def reset_password(db: AsyncSession, user_id: UUID, new_password: str) -> User:
    """Set a new password on behalf of the user."""
    user = await get_user(db, user_id)
    user.hashed_password = auth_service.hash_password(new_password)
    await db.flush()
    logger.info("Password reset for user %s", user.username)
    return user


async def change_own_password(
    db: AsyncSession, user: User, current_password: str, new_password: str
) -> None:
    """Change a user's own password. Verifies current password first."""
    if not auth_service.verify_password(current_password, user.hashed_password):
        raise BusinessError("Current password is incorrect")
    user.hashed_password = auth_service.hash_password(new_password)
    await db.flush()
