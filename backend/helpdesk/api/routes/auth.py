import uuid

from fastapi import APIRouter, Cookie, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.database import get_db
from helpdesk.schemas.auth import LoginRequest, TokenResponse
from helpdesk.services import auth_service
from helpdesk.services import user_service

router = APIRouter()

REFRESH_COOKIE = "refresh_token"


def _access_token_for(user) -> str:
    return auth_service.create_access_token(user.id, user.role_names, user.is_admin)


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate user and return access token. Sets refresh token as HTTP-only cookie."""
    user = await user_service.authenticate(db, data.username, data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )
    await db.commit()

    access_token = _access_token_for(user)
    refresh_token = auth_service.create_refresh_token(user.id)

    response.set_cookie(
        key=REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        secure=True,
        samesite="strict",
    )

    return TokenResponse(access_token=access_token)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    db: AsyncSession = Depends(get_db),
    refresh_token: str | None = Cookie(None),
):
    """Issue a new access token using the refresh token cookie."""
    if not refresh_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token missing",
        )

    try:
        payload = auth_service.decode_token(refresh_token)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )

    if payload.get("type") != "refresh":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    user = await user_service.get_user(db, uuid.UUID(payload["sub"]))
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return TokenResponse(access_token=_access_token_for(user))


@router.post("/logout")
async def logout(response: Response):
    """Log out by deleting the refresh token cookie."""
    response.delete_cookie(key=REFRESH_COOKIE)
    return {"message": "Logged out"}
