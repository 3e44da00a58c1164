import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.auditing import set_current_user_id
from helpdesk.database import get_db
from helpdesk.exceptions import ForbiddenError
from helpdesk.models.api_key import ApiKey
from helpdesk.models.base import ActorType
from helpdesk.models.role import BuiltInSystemPermission, SystemPermission
from helpdesk.models.user import User
from helpdesk.services import auth_service

API_KEY_HEADER = "X-API-Key"


@dataclass
class CurrentUser:
    user: User
    auth_type: str  # "jwt" or "api_key"
    api_key_id: uuid.UUID | None = None

    @property
    def actor_type(self) -> ActorType:
        return ActorType.api_key if self.auth_type == "api_key" else ActorType.user

    def has_permission(self, permission: SystemPermission) -> bool:
        return self.user.has_permission(permission)


async def _load_active_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(
        select(User)
        .where(User.id == user_id, User.is_active == True)
        .options(selectinload(User.roles))
    )
    return result.scalar_one_or_none()


async def get_current_user(
    authorization: str | None = Header(None),
    api_key: str | None = Header(None, alias=API_KEY_HEADER),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Unified auth dependency. Tries JWT first, then API key."""
    # Try JWT
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
        try:
            payload = auth_service.decode_token(token)
            if payload.get("type") != "access":
                raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")
            user_id = uuid.UUID(payload["sub"])
        except HTTPException:
            raise
        except Exception:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

        user = await _load_active_user(db, user_id)
        if not user:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or inactive")
        set_current_user_id(user.id)
        return CurrentUser(user=user, auth_type="jwt")

    # Try API key
    if api_key:
        prefix = api_key[:8]
        result = await db.execute(
            select(ApiKey).where(ApiKey.key_prefix == prefix, ApiKey.is_active == True)
        )
        for key in result.scalars().all():
            if auth_service.verify_api_key(api_key, key.key_hash):
                if key.expires_at and key.expires_at < datetime.now(timezone.utc):
                    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API key expired")
                user = await _load_active_user(db, key.user_id)
                if not user:
                    raise HTTPException(
                        status_code=status.HTTP_401_UNAUTHORIZED, detail="API key user not found or inactive"
                    )
                # Flush, not commit: the route handler commits
                key.last_used_at = datetime.now(timezone.utc)
                await db.flush()
                set_current_user_id(user.id)
                return CurrentUser(user=user, auth_type="api_key", api_key_id=key.id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")


def require_permission(*permissions: SystemPermission):
    """Dependency factory that checks the current user holds at least one of the permissions."""
    async def permission_checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not any(current_user.has_permission(p) for p in permissions):
            names = [item.developer_name for p in permissions for item in BuiltInSystemPermission.from_flags(p)]
            raise ForbiddenError(f"Missing permission. Required one of: {names}")
        return current_user
    return permission_checker
