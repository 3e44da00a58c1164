import asyncio
import logging

from helpdesk.config import settings
from helpdesk.database import async_session
from helpdesk.services import appointment_service

logger = logging.getLogger(__name__)


async def send_appointment_reminders():
    """Notify staff of upcoming appointments, once per appointment."""
    while True:
        try:
            async with async_session() as db:
                sent = await appointment_service.send_due_reminders(db)
                if sent > 0:
                    logger.info("Sent %d appointment reminders", sent)
        except Exception:
            logger.exception("Appointment reminder run failed")
        await asyncio.sleep(settings.reminder_interval_seconds)
