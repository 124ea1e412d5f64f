"""
Async SQLAlchemy engine and request-scoped sessions.

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) for development
and tests.
"""
import re
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from siteinsights.core.config import settings
from siteinsights.core.logging import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""
    pass


def normalize_database_url(database_url: str) -> str:
    """Point plain postgres URLs at the asyncpg driver."""
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create async database engine with proper configuration."""
    database_url = normalize_database_url(database_url or settings.database_url)

    sanitized = re.sub(r":([^:@/]+)@", ":***@", database_url)
    logger.info("Creating database engine", url=sanitized)

    if database_url.startswith("sqlite"):
        # SQLite has no connection pool sizing
        return create_async_engine(database_url, echo=settings.database_echo)

    return create_async_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )


engine = create_engine()
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session with automatic cleanup."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# Type alias for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]


async def init_db() -> None:
    """
    Create tables for all registered models.

    A failure is logged rather than raised so the health endpoints can
    still report the problem.
    """
    # Register models on the metadata before create_all
    import siteinsights.models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized")
    except Exception as e:
        logger.warning("Database initialization failed", error=str(e))


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
    logger.info("Database connections closed")
