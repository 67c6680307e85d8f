"""Entity-store repository — SQL-backed ``EntityStore``.

Read-only access to municipalities, challenges, pilots, and partnerships
filtered by simple equality predicates.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mii.db.tables import ChallengeRow, MunicipalityRow, PartnershipRow, PilotRow
from mii.models.entities import (
    Challenge,
    ChallengeStatus,
    Municipality,
    Partnership,
    PartnershipStatus,
    Pilot,
    PilotStage,
)
from mii.repositories.base import as_utc, translate_unavailable
from mii.scoring.stores import EntityStore


def _where(model: type, **filters: Any) -> list:
    return [
        getattr(model, name) == wanted
        for name, wanted in filters.items()
        if wanted is not None
    ]


def municipality_from_row(row: MunicipalityRow) -> Municipality:
    return Municipality(
        municipality_id=row.municipality_id,
        name_en=row.name_en,
        name_ar=row.name_ar,
        region=row.region,
        city_type=row.city_type,
        population=row.population,
        mii_score=row.mii_score,
        mii_rank=row.mii_rank,
        active_pilots=row.active_pilots,
        completed_pilots=row.completed_pilots,
        is_active=row.is_active,
        is_deleted=row.is_deleted,
        mii_recalc_pending=row.mii_recalc_pending,
        mii_last_calculated_at=as_utc(row.mii_last_calculated_at),
    )


class EntityRepository(EntityStore):
    """SQL implementation of the entity fetchers."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _fetch(self, stmt) -> list:
        # Recalculations write through their own sessions; refresh any
        # rows already in this session's identity map.
        async with translate_unavailable():
            result = await self._session.execute(
                stmt.execution_options(populate_existing=True)
            )
            return list(result.scalars().all())

    async def list_municipalities(
        self,
        *,
        municipality_id: UUID | None = None,
        is_active: bool | None = None,
        is_deleted: bool | None = None,
        mii_recalc_pending: bool | None = None,
    ) -> list[Municipality]:
        rows = await self._fetch(
            select(MunicipalityRow)
            .where(
                *_where(
                    MunicipalityRow,
                    municipality_id=municipality_id,
                    is_active=is_active,
                    is_deleted=is_deleted,
                    mii_recalc_pending=mii_recalc_pending,
                )
            )
            .order_by(MunicipalityRow.municipality_id)
        )
        return [municipality_from_row(r) for r in rows]

    async def list_challenges(
        self,
        *,
        municipality_id: UUID | None = None,
        is_deleted: bool | None = None,
    ) -> list[Challenge]:
        rows = await self._fetch(
            select(ChallengeRow).where(
                *_where(ChallengeRow, municipality_id=municipality_id, is_deleted=is_deleted)
            )
        )
        return [
            Challenge(
                challenge_id=r.challenge_id,
                municipality_id=r.municipality_id,
                status=ChallengeStatus(r.status),
                is_deleted=r.is_deleted,
            )
            for r in rows
        ]

    async def list_pilots(
        self,
        *,
        municipality_id: UUID | None = None,
        is_deleted: bool | None = None,
    ) -> list[Pilot]:
        rows = await self._fetch(
            select(PilotRow).where(
                *_where(PilotRow, municipality_id=municipality_id, is_deleted=is_deleted)
            )
        )
        return [
            Pilot(
                pilot_id=r.pilot_id,
                municipality_id=r.municipality_id,
                stage=PilotStage(r.stage),
                is_deleted=r.is_deleted,
            )
            for r in rows
        ]

    async def list_partnerships(
        self,
        *,
        municipality_id: UUID | None = None,
        is_deleted: bool | None = None,
    ) -> list[Partnership]:
        rows = await self._fetch(
            select(PartnershipRow).where(
                *_where(
                    PartnershipRow, municipality_id=municipality_id, is_deleted=is_deleted,
                )
            )
        )
        return [
            Partnership(
                partnership_id=r.partnership_id,
                municipality_id=r.municipality_id,
                status=PartnershipStatus(r.status),
                is_deleted=r.is_deleted,
            )
            for r in rows
        ]
