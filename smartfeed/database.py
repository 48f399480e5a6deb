"""
Async SQLAlchemy engine + session factory for TiDB (MySQL-protocol).

TiDB is wire-compatible with MySQL 5.7, so we use the aiomysql driver.
The engine is created once at startup and reused by every store.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from smartfeed.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.tidb_url,
    pool_pre_ping=True,
    pool_size=20,
    max_overflow=10,
    echo=False,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    """Create all tables if they don't exist (idempotent)."""
    # Register the mappers on Base.metadata
    from smartfeed import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def dispose_db() -> None:
    await engine.dispose()
