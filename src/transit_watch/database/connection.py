"""Database connection management.

Provides async database connection using SQLAlchemy with asyncpg.

## Configuration

Database connection is configured via environment variables:
- DATABASE_URL: Full PostgreSQL connection string
- DATABASE_POOL_SIZE: Connection pool size (default: 5)
- DATABASE_MAX_OVERFLOW: Max overflow connections (default: 10)

## Usage

```python
from transit_watch.database import init_db
from transit_watch.database.users import SqlAlchemyUserStore

# Initialize on startup
session_factory = await init_db(settings)
store = SqlAlchemyUserStore(session_factory)
```
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from transit_watch.database.models import Base

if TYPE_CHECKING:
    from transit_watch.config import Settings

logger = logging.getLogger(__name__)

# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(settings: Settings) -> dict:
    options: dict = {"echo": settings.database_echo}
    # SQLite (tests, local dev) does not take pool sizing arguments
    if not settings.database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
    return options


async def init_db(settings: Settings) -> async_sessionmaker[AsyncSession]:
    """Initialize the database connection.

    Creates the async engine and session factory. Should be called
    once on application startup.

    Returns:
        The session factory, for handing to a UserStore
    """
    global _engine, _session_factory

    logger.info("Initializing database connection")

    _engine = create_async_engine(settings.database_url, **_engine_options(settings))
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("Database connection initialized")
    return _session_factory


async def close_db() -> None:
    """Close the database connection.

    Should be called on application shutdown.
    """
    global _engine, _session_factory

    if _engine:
        logger.info("Closing database connection")
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def create_tables() -> None:
    """Create all database tables.

    For development/testing only. Use migrations in production.
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created")
