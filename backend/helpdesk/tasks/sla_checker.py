import asyncio
import logging

from helpdesk.config import settings
from helpdesk.database import async_session
from helpdesk.services import sla_service

logger = logging.getLogger(__name__)


async def check_sla_breaches():
    """Re-evaluate SLA status of open tickets every ``sla_check_interval_seconds``."""
    while True:
        try:
            async with async_session() as db:
                changed = await sla_service.evaluate_open_tickets(db)
                if changed > 0:
                    logger.info("SLA check complete: %d tickets changed status", changed)
        except Exception:
            logger.exception("SLA check failed")
        await asyncio.sleep(settings.sla_check_interval_seconds)
