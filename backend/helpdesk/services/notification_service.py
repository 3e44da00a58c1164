import logging
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.exceptions import NotFoundError
from helpdesk.models.base import NotificationEventType, utcnow
from helpdesk.models.notification import Notification, NotificationPreference

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 1000


def _truncate(value: str, limit: int) -> str:
    return value if len(value) <= limit else value[: limit - 3] + "..."


async def is_enabled(db: AsyncSession, user_id: UUID, event_type: NotificationEventType) -> bool:
    """In-app notifications are on unless the user switched the event off."""
    result = await db.execute(
        select(NotificationPreference.in_app_enabled).where(
            NotificationPreference.user_id == user_id,
            NotificationPreference.event_type == event_type,
        )
    )
    enabled = result.scalar_one_or_none()
    return True if enabled is None else enabled


async def notify(
    db: AsyncSession,
    recipient_user_id: UUID | None,
    event_type: NotificationEventType,
    title: str,
    message: str,
    url: str | None = None,
    ticket_id: UUID | None = None,
    exclude_user_id: UUID | None = None,
) -> Notification | None:
    """Create an in-app notification unless the recipient opted out or is the actor."""
    if recipient_user_id is None or recipient_user_id == exclude_user_id:
        return None
    if not await is_enabled(db, recipient_user_id, event_type):
        return None
    notification = Notification(
        recipient_user_id=recipient_user_id,
        event_type=event_type,
        title=_truncate(title, TITLE_MAX_LENGTH),
        message=_truncate(message, MESSAGE_MAX_LENGTH),
        url=url,
        ticket_id=ticket_id,
    )
    db.add(notification)
    await db.flush()
    logger.debug("Notified user %s of %s", recipient_user_id, event_type.value)
    return notification


async def notify_many(
    db: AsyncSession,
    recipient_user_ids: list[UUID],
    event_type: NotificationEventType,
    title: str,
    message: str,
    url: str | None = None,
    ticket_id: UUID | None = None,
    exclude_user_id: UUID | None = None,
) -> int:
    sent = 0
    for user_id in dict.fromkeys(recipient_user_ids):
        if await notify(db, user_id, event_type, title, message, url, ticket_id, exclude_user_id):
            sent += 1
    return sent


async def list_notifications(
    db: AsyncSession,
    user_id: UUID,
    page: int = 1,
    page_size: int = 25,
    unread_only: bool = False,
) -> tuple[list[Notification], int]:
    query = select(Notification).where(Notification.recipient_user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)

    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar_one()

    offset = (page - 1) * page_size
    result = await db.execute(
        query.order_by(Notification.created_at.desc()).offset(offset).limit(page_size)
    )
    return list(result.scalars().all()), total


async def unread_count(db: AsyncSession, user_id: UUID) -> int:
    result = await db.execute(
        select(func.count()).select_from(Notification).where(
            Notification.recipient_user_id == user_id, Notification.is_read == False
        )
    )
    return result.scalar_one()


async def mark_read(db: AsyncSession, user_id: UUID, notification_id: UUID) -> Notification:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id, Notification.recipient_user_id == user_id
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        await db.flush()
    return notification


async def mark_all_read(db: AsyncSession, user_id: UUID) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.recipient_user_id == user_id, Notification.is_read == False)
        .values(is_read=True, read_at=utcnow())
    )
    return result.rowcount or 0


async def get_preferences(db: AsyncSession, user_id: UUID) -> list[dict]:
    """One entry per event type; unset preferences default to enabled."""
    result = await db.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    )
    stored = {p.event_type: p.in_app_enabled for p in result.scalars().all()}
    return [
        {"event_type": event_type, "in_app_enabled": stored.get(event_type, True)}
        for event_type in NotificationEventType
    ]


async def update_preferences(
    db: AsyncSession, user_id: UUID, preferences: dict[NotificationEventType, bool]
) -> list[dict]:
    result = await db.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    )
    existing = {p.event_type: p for p in result.scalars().all()}
    for event_type, enabled in preferences.items():
        preference = existing.get(event_type)
        if preference is None:
            db.add(NotificationPreference(user_id=user_id, event_type=event_type, in_app_enabled=enabled))
        else:
            preference.in_app_enabled = enabled
    await db.flush()
    return await get_preferences(db, user_id)
