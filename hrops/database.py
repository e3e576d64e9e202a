"""Async SQLAlchemy engine and session management."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from hrops.config import settings


def build_engine(url: str) -> AsyncEngine:
    """Engine for the API and the job runners.

    On PostgreSQL every connection gets a ``lock_timeout`` so a ledger or
    session row lock held too long fails fast and is retried, instead of
    queueing requests behind it.
    """
    connect_args: dict = {}
    if url.startswith("postgresql+asyncpg"):
        connect_args["server_settings"] = {
            "lock_timeout": str(settings.DB_LOCK_TIMEOUT_MS),
        }
    return create_async_engine(
        url,
        echo=settings.SQL_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


engine = build_engine(settings.DATABASE_URL)

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
    """FastAPI dependency: one session per request, committed on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
