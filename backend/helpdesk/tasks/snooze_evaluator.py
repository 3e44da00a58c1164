import asyncio
import logging

from helpdesk.config import settings
from helpdesk.database import async_session
from helpdesk.services import ticket_service

logger = logging.getLogger(__name__)


async def wake_snoozed_tickets():
    """Unsnooze expired tickets every ``snooze_check_interval_seconds``."""
    while True:
        try:
            async with async_session() as db:
                woken = await ticket_service.unsnooze_due_tickets(db)
                if woken > 0:
                    logger.info("Snooze check complete: %d tickets unsnoozed", woken)
        except Exception:
            logger.exception("Snooze check failed")
        await asyncio.sleep(settings.snooze_check_interval_seconds)
