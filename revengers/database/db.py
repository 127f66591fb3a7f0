"""
PostgreSQL database connection and management using SQLAlchemy async mode.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.orm import DeclarativeBase

from revengers.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# Import models to register them with Base.metadata
# This must be after Base is defined to avoid circular imports
from revengers.database import models  # noqa: F401, E402


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create the async engine for DATABASE_URL.

    The SQLAlchemy pool is sized to DB_POOL_MAX with no overflow; admission
    beyond that is handled by StorageGateway.

    Raises:
        RuntimeError: If no database URL is configured
    """
    url = database_url or settings.database_url
    if not url:
        raise RuntimeError("DATABASE_URL is not configured")
    return create_async_engine(
        url,
        future=True,
        pool_pre_ping=True,  # Verify connections before using them
        pool_size=settings.db_pool_max,
        max_overflow=0,
        pool_timeout=settings.db_pool_timeout_seconds,
    )


async def init_database(engine: AsyncEngine) -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        # checkfirst=True means it won't error if tables already exist
        def create_tables(sync_conn):
            Base.metadata.create_all(bind=sync_conn, checkfirst=True)
        await conn.run_sync(create_tables)
    logger.info("Database schema ensured")
