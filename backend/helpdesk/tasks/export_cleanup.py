import asyncio
import logging

from helpdesk.config import settings
from helpdesk.database import async_session
from helpdesk.services import export_service

logger = logging.getLogger(__name__)


async def cleanup_expired_exports():
    """Hourly removal of expired export files."""
    while True:
        try:
            async with async_session() as db:
                await export_service.cleanup_expired(db)
        except Exception:
            logger.exception("Export cleanup failed")
        await asyncio.sleep(settings.export_cleanup_interval_seconds)
