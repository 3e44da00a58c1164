from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import helpdesk.auditing  # noqa: F401  registers the before_flush listener
from helpdesk.config import settings

engine = create_async_engine(settings.database_url, echo=settings.database_echo)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session per request. Route handlers commit explicitly."""
    async with async_session() as session:
        yield session
