"""Async SQLAlchemy engine and session factory for the compliance store.

Repositories open one session per call from ``async_session_factory``;
nothing here holds a session across requests.
"""

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import settings

logger = structlog.get_logger()


def _create_engine(url: str) -> AsyncEngine:
    # SQLite (tests, local runs) has no server-side pool to pre-ping
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.debug)
    return create_async_engine(url, echo=settings.debug, pool_pre_ping=True)


engine = _create_engine(settings.database_url)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Create the customer, transaction and investigation tables if missing."""
    from src.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized", tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    await engine.dispose()
    logger.info("database_closed")


async def check_db() -> bool:
    """Check database connectivity."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("database_check_failed", exc_info=True)
        return False
