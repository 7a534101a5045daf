"""Async SQLAlchemy engine and session management."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from portal.config import settings


def engine_options() -> dict[str, Any]:
    """Engine keyword arguments for the configured database URL."""
    options: dict[str, Any] = {
        "echo": settings.ENVIRONMENT == "development",
        "pool_pre_ping": True,
    }
    # SQLite engines run on a static/null pool, which takes no sizing
    if not settings.DATABASE_URL.startswith("sqlite"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )
    return options


# Async engine for FastAPI
engine = create_async_engine(settings.DATABASE_URL, **engine_options())

# Async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncSession:
    """FastAPI dependency: yield an async database session.

    The session is one transaction: committed when the endpoint returns,
    rolled back if anything raised.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
