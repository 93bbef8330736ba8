"""
Database session configuration.

The tracking backend reads two tables: users (for the active-user check on
HTTP calls) and schedules (driver assignment and the live flag). Engine and
sessions are async SQLAlchemy over asyncpg.
"""

import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from busline.app.core.config import settings

logger = logging.getLogger("busline.db")

engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def create_tables(bind=engine) -> None:
    """Create missing tables. Used at startup and by the seed script."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")


async def get_db():
    """
    FastAPI dependency for database sessions.

    Rolls back whatever the request left uncommitted if it failed.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
