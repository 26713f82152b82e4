"""Call archive engine and session management."""
import logging
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from future_self.core.config import settings
from future_self.db.models import Base

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def async_database_url(url: str) -> str:
    """Select the async driver for plain postgresql:// and sqlite:// URLs."""
    for plain, driver in _ASYNC_DRIVERS.items():
        if url.startswith(plain):
            return url.replace(plain, driver, 1)
    return url


def sync_database_url(url: str) -> str:
    """Strip the async driver again, for migrations on a sync engine."""
    for plain, driver in _ASYNC_DRIVERS.items():
        if url.startswith(driver):
            return url.replace(driver, plain, 1)
    return url


database_url = async_database_url(settings.database_url)

engine = create_async_engine(
    database_url,
    echo=False,
    pool_pre_ping=database_url.startswith("postgresql"),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Create archive tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"[DB] Call archive ready ({engine.url.get_backend_name()})")


async def close_db() -> None:
    await engine.dispose()


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency for getting database session."""
    async with AsyncSessionLocal() as session:
        yield session
