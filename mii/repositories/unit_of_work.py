"""SQL unit of work: one fresh AsyncSession per recalculation attempt.

A failed attempt may leave its session unusable: an aborted transaction,
or an asyncpg connection whose query was cancelled by a timeout. The
retry therefore never reuses it. On failure the session is rolled back;
if even the rollback fails, the session is invalidated so its connection
is discarded rather than returned to the pool.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mii.repositories.base import translate_unavailable
from mii.repositories.entities import EntityRepository
from mii.repositories.snapshots import ScoreSnapshotRepository
from mii.scoring.stores import UnitOfWork, UnitOfWorkFactory

logger = logging.getLogger(__name__)


class SqlUnitOfWork(UnitOfWork):
    """Repositories bound to a session opened on ``__aenter__``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._session: AsyncSession | None = None

    async def __aenter__(self) -> "SqlUnitOfWork":
        self._session = self._session_factory()
        self.entities = EntityRepository(self._session)
        self.snapshots = ScoreSnapshotRepository(self._session)
        return self

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("SqlUnitOfWork used outside 'async with'.")
        return self._session

    async def commit(self) -> None:
        async with translate_unavailable():
            await self.session.commit()

    async def rollback(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback failed; invalidating session connection.")
            await self.session.invalidate()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


def sql_unit_of_work_factory(
    session_factory: async_sessionmaker[AsyncSession],
) -> UnitOfWorkFactory:
    """Factory suitable for ``RecalculationOrchestrator(unit_of_work)``."""

    def _factory() -> SqlUnitOfWork:
        return SqlUnitOfWork(session_factory)

    return _factory
