"""
Booking database engine and unit of work.

Repository operations each run inside one get_db_context() block. Multi-session
batches and payment settlement rely on its all-or-nothing commit.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from booking_bot.config import settings
from booking_bot.models.database import Base

logger = logging.getLogger(__name__)


def _build_engine() -> AsyncEngine:
    """Development reloads drop connections, so pooling is production only."""
    if settings.is_development:
        return create_async_engine(
            settings.database_url,
            echo=settings.debug,
            poolclass=NullPool,
        )
    return create_async_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


engine = _build_engine()

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Run a unit of work.

    Commits when the block exits normally. Any exception rolls back every
    write made in the block and is re-raised.

    Usage:
        async with get_db_context() as db:
            db.add_all(bookings)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning(f"Unit of work rolled back: {type(e).__name__}")
            raise


async def init_db() -> None:
    """Create booking tables. Development only, production uses migrations."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")


async def close_db() -> None:
    await engine.dispose()


async def check_db_health() -> bool:
    """Run a trivial query for the readiness check."""
    started = time.monotonic()
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return False
    logger.debug(f"Database health check took {(time.monotonic() - started) * 1000:.1f}ms")
    return True
