"""
Account store connection handling.

One async engine serves the API and the backup CLI. Sessions keep their
objects loaded after commit because import stages read ids back from
rows they have just committed.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cardvault.config import Settings, settings
from cardvault.models.db import Base

logger = logging.getLogger(__name__)


def build_engine(config: Settings = settings) -> AsyncEngine:
    """Create the engine for the configured account store."""
    return create_async_engine(config.database_url, echo=config.debug, pool_pre_ping=True)


engine = build_engine()

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session for one import or export request.

    Whatever the request left pending is committed when it finishes; a
    database error rolls the session back before propagating.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create any missing account store tables."""
    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Account store ready (%d tables)", len(Base.metadata.tables))
