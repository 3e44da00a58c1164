import math
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.dependencies import CurrentUser, get_current_user
from helpdesk.database import get_db
from helpdesk.schemas.common import MessageResponse, PaginatedResponse
from helpdesk.schemas.notification import (
    NotificationPreferenceItem,
    NotificationPreferencesUpdate,
    NotificationResponse,
    UnreadCountResponse,
)
from helpdesk.services import notification_service

router = APIRouter()


@router.get("/", response_model=PaginatedResponse[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List the current user's notifications, newest first."""
    items, total = await notification_service.list_notifications(
        db, current_user.user.id, page=page, page_size=page_size, unread_only=unread_only
    )
    pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginatedResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return UnreadCountResponse(unread_count=await notification_service.unread_count(db, current_user.user.id))


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    count = await notification_service.mark_all_read(db, current_user.user.id)
    await db.commit()
    return MessageResponse(message=f"Marked {count} notifications as read")


@router.get("/preferences", response_model=list[NotificationPreferenceItem])
async def get_preferences(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await notification_service.get_preferences(db, current_user.user.id)


@router.put("/preferences", response_model=list[NotificationPreferenceItem])
async def update_preferences(
    data: NotificationPreferencesUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Enable or disable in-app notifications per event type."""
    preferences = await notification_service.update_preferences(
        db, current_user.user.id, {p.event_type: p.in_app_enabled for p in data.preferences}
    )
    await db.commit()
    return preferences


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    notification = await notification_service.mark_read(db, current_user.user.id, notification_id)
    await db.commit()
    return notification
