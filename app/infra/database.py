"""
Database engine and sessions.

One async engine per process. The SQL stores receive async_session_factory
and open one transaction per operation, so no session is shared between
requests or handed to route handlers.
"""

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings
from app.models.database import Base

logger = logging.getLogger(__name__)

# The appointment exclusion constraint mixes an equality on doctor_id with a
# range overlap, which needs btree_gist
REQUIRED_EXTENSIONS = ("btree_gist",)


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    """Engine for the configured database. SQL is echoed in debug mode."""
    return create_async_engine(
        url or settings.database_url,
        echo=settings.debug,
        poolclass=NullPool,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory for the stores.

    Rows stay readable after commit (they are mapped to records after the
    transaction ends) and flushes are explicit.
    """
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()
async_session_factory = build_session_factory(engine)


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """
    Create required extensions, then all tables.

    WARNING: development only. Production schemas are managed by migrations.
    """
    async with (bind or engine).begin() as conn:
        for extension in REQUIRED_EXTENSIONS:
            await conn.execute(text(f"CREATE EXTENSION IF NOT EXISTS {extension}"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Schema ready ({len(Base.metadata.tables)} tables)")


async def close_db() -> None:
    """Dispose the engine on application shutdown."""
    await engine.dispose()


async def check_db_health() -> bool:
    """
    Check database connectivity for the readiness probe.

    Returns:
        True if a trivial query succeeds
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return False
    return True
