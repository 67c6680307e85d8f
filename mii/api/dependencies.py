"""FastAPI dependency injection factories for the MII engine.

Read-side factories take AsyncSession via Depends(get_async_session) and
return a repository or service instance. The orchestrator instead takes the
session factory, because every recalculation attempt opens its own session.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mii.config.settings import Settings, get_settings
from mii.db.session import get_async_session, get_session_factory
from mii.repositories.entities import EntityRepository
from mii.repositories.snapshots import ScoreSnapshotRepository
from mii.repositories.unit_of_work import sql_unit_of_work_factory
from mii.scoring.events import EventBus
from mii.scoring.orchestrator import RecalculationOrchestrator
from mii.scoring.service import MIIViewService

# Process-wide bus; read-path caches subscribe at startup.
event_bus = EventBus()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


async def get_entity_repo(
    session: AsyncSession = Depends(get_async_session),
) -> EntityRepository:
    return EntityRepository(session)


async def get_snapshot_repo(
    session: AsyncSession = Depends(get_async_session),
) -> ScoreSnapshotRepository:
    return ScoreSnapshotRepository(session)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


async def get_event_bus() -> EventBus:
    return event_bus


async def get_view_service(
    entities: EntityRepository = Depends(get_entity_repo),
    snapshots: ScoreSnapshotRepository = Depends(get_snapshot_repo),
) -> MIIViewService:
    return MIIViewService(entities, snapshots)


async def get_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    events: EventBus = Depends(get_event_bus),
) -> RecalculationOrchestrator:
    return RecalculationOrchestrator(
        sql_unit_of_work_factory(session_factory), settings=settings, events=events,
    )
