import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user
from helpdesk.database import get_db
from helpdesk.schemas.api_key import ApiKeyCreate, ApiKeyCreateResponse, ApiKeyResponse
from helpdesk.services import auth_service

router = APIRouter()


@router.post("/", response_model=ApiKeyCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    data: ApiKeyCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Create a new API key. The plain key is returned once and cannot be retrieved again."""
    api_key, plain_key = await auth_service.create_api_key_for_user(
        db, current_user.user.id, data.name, data.expires_at
    )
    await db.commit()
    return ApiKeyCreateResponse(
        id=api_key.id,
        name=api_key.name,
        key_prefix=api_key.key_prefix,
        is_active=api_key.is_active,
        last_used_at=api_key.last_used_at,
        expires_at=api_key.expires_at,
        created_at=api_key.created_at,
        plain_key=plain_key,
    )


@router.get("/", response_model=list[ApiKeyResponse])
async def list_api_keys(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List all active API keys for the current user."""
    return await auth_service.list_api_keys(db, current_user.user.id)


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_api_key(
    key_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Revoke an API key."""
    await auth_service.revoke_api_key(db, current_user.user.id, key_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
