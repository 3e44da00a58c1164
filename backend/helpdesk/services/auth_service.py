import secrets
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import settings
from helpdesk.exceptions import BusinessError, NotFoundError
from helpdesk.models.api_key import ApiKey
from helpdesk.models.base import utcnow

API_KEY_PREFIX = "hdk_"


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against its bcrypt hash."""
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def create_access_token(user_id: uuid.UUID, roles: list[str], is_admin: bool = False) -> str:
    """Create a JWT access token with exp, sub (user_id), roles and is_admin claims."""
    payload = {
        "sub": str(user_id),
        "roles": roles,
        "is_admin": is_admin,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes),
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_refresh_token(user_id: uuid.UUID) -> str:
    """Create a JWT refresh token with longer expiry."""
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + timedelta(days=settings.refresh_token_expire_days),
        "type": "refresh",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises jwt.InvalidTokenError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def generate_api_key() -> tuple[str, str, str]:
    """Generate an API key. Returns (plain_key, key_hash, key_prefix)."""
    plain_key = API_KEY_PREFIX + secrets.token_hex(20)
    key_hash = bcrypt.hashpw(plain_key.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
    key_prefix = plain_key[:8]
    return plain_key, key_hash, key_prefix


def verify_api_key(plain_key: str, key_hash: str) -> bool:
    """Verify an API key against its bcrypt hash."""
    return bcrypt.checkpw(plain_key.encode("utf-8"), key_hash.encode("utf-8"))


async def create_api_key_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    name: str,
    expires_at: datetime | None = None,
) -> tuple[ApiKey, str]:
    """Create an API key for a user. Returns (ApiKey model, plain_key)."""
    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= utcnow():
            raise BusinessError("Expiry must be in the future")
    plain_key, key_hash, key_prefix = generate_api_key()
    api_key = ApiKey(
        name=name,
        key_hash=key_hash,
        key_prefix=key_prefix,
        user_id=user_id,
        expires_at=expires_at,
    )
    db.add(api_key)
    await db.flush()
    return api_key, plain_key


async def list_api_keys(db: AsyncSession, user_id: uuid.UUID) -> list[ApiKey]:
    """List all active API keys for a user."""
    result = await db.execute(
        select(ApiKey)
        .where(ApiKey.user_id == user_id, ApiKey.is_active == True)
        .order_by(ApiKey.created_at)
    )
    return list(result.scalars().all())


async def revoke_api_key(
    db: AsyncSession,
    user_id: uuid.UUID,
    key_id: uuid.UUID,
) -> None:
    """Revoke an API key by setting is_active=False."""
    result = await db.execute(
        select(ApiKey).where(ApiKey.id == key_id, ApiKey.user_id == user_id)
    )
    api_key = result.scalar_one_or_none()
    if api_key is None:
        raise NotFoundError("API key", key_id)
    api_key.is_active = False
    await db.flush()
