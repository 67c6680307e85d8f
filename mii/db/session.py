"""Async database wiring for the MII engine.

Read endpoints share one request-scoped session. Recalculations open a
fresh session per attempt from ``async_session_factory`` through
``mii.repositories.unit_of_work``.
"""

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from mii.config.settings import Environment, get_settings


class Base(DeclarativeBase):
    """Declarative base for the MII tables."""


_settings = get_settings()

engine = create_async_engine(
    _settings.DATABASE_URL,
    echo=_settings.ENVIRONMENT == Environment.DEV,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory recalculations draw their per-attempt sessions from."""
    return async_session_factory


async def get_async_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session: committed on success, rolled back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
