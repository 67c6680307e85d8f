"""Score snapshot repository — SQL-backed ``SnapshotStore``.

Repos take AsyncSession, call add()/flush() only — never commit().
The session owner (request dependency or ``SqlUnitOfWork``) commits.

One snapshot per (municipality_id, as_of) (UniqueConstraint). commit_snapshot
is idempotent: it deletes any existing row for the same key before
inserting. A snapshot older than the latest stored one is rejected. The
write runs inside a SAVEPOINT so the snapshot and the municipality's
current fields are written together or not at all.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mii.db.tables import MunicipalityRow, ScoreSnapshotRow
from mii.models.common import utc_now
from mii.repositories.base import as_utc, translate_unavailable
from mii.scoring.errors import NotFoundError
from mii.scoring.models import MIIDimension, ScoreSnapshot
from mii.scoring.stores import SnapshotStore, reject_stale_snapshot


def snapshot_from_row(row: ScoreSnapshotRow) -> ScoreSnapshot:
    return ScoreSnapshot(
        snapshot_id=row.snapshot_id,
        municipality_id=row.municipality_id,
        as_of=as_utc(row.as_of),
        assessment_year=row.assessment_year,
        overall_score=row.overall_score,
        dimension_values={
            MIIDimension(name): value for name, value in row.dimension_values.items()
        },
        rank=row.rank,
        previous_rank=row.previous_rank,
        formula_version=row.formula_version,
    )


class ScoreSnapshotRepository(SnapshotStore):
    """Repository for immutable MII score snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def commit_snapshot(
        self,
        snapshot: ScoreSnapshot,
        *,
        ranks: dict[UUID, int],
        active_pilots: int,
        completed_pilots: int,
    ) -> ScoreSnapshot:
        """Save (or replace) a snapshot and point the municipality at it."""
        mid = snapshot.municipality_id
        async with translate_unavailable():
            async with self._session.begin_nested():
                municipality = await self._session.get(MunicipalityRow, mid)
                if municipality is None:
                    raise NotFoundError(
                        f"Municipality {mid} not found.", municipality_id=mid,
                    )

                latest = await self._session.execute(
                    select(ScoreSnapshotRow)
                    .where(ScoreSnapshotRow.municipality_id == mid)
                    .order_by(ScoreSnapshotRow.as_of.desc())
                    .limit(1)
                )
                latest_row = latest.scalars().first()
                reject_stale_snapshot(
                    snapshot,
                    snapshot_from_row(latest_row) if latest_row is not None else None,
                )

                # Delete existing (idempotent upsert)
                await self._session.execute(
                    delete(ScoreSnapshotRow).where(
                        ScoreSnapshotRow.municipality_id == mid,
                        ScoreSnapshotRow.as_of == snapshot.as_of,
                    )
                )
                await self._session.flush()

                row = ScoreSnapshotRow(
                    snapshot_id=snapshot.snapshot_id,
                    municipality_id=mid,
                    as_of=snapshot.as_of,
                    assessment_year=snapshot.assessment_year,
                    overall_score=snapshot.overall_score,
                    dimension_values={
                        dim.value: value
                        for dim, value in snapshot.dimension_values.items()
                    },
                    rank=snapshot.rank,
                    previous_rank=snapshot.previous_rank,
                    formula_version=snapshot.formula_version,
                    created_at=utc_now(),
                )
                self._session.add(row)
                await self._session.flush()

                # Current fields follow the snapshot just written.
                municipality.mii_score = snapshot.overall_score
                municipality.mii_rank = snapshot.rank
                municipality.active_pilots = active_pilots
                municipality.completed_pilots = completed_pilots
                municipality.mii_recalc_pending = False
                municipality.mii_last_calculated_at = snapshot.as_of

                for other_id, rank in ranks.items():
                    if other_id == mid:
                        continue
                    await self._session.execute(
                        update(MunicipalityRow)
                        .where(MunicipalityRow.municipality_id == other_id)
                        .values(mii_rank=rank)
                    )
                await self._session.flush()
        return snapshot

    async def list_snapshots(self, municipality_id: UUID) -> list[ScoreSnapshot]:
        """All snapshots for a municipality, oldest first."""
        async with translate_unavailable():
            result = await self._session.execute(
                select(ScoreSnapshotRow)
                .where(ScoreSnapshotRow.municipality_id == municipality_id)
                .order_by(ScoreSnapshotRow.as_of.asc())
            )
            return [snapshot_from_row(r) for r in result.scalars().all()]

    async def latest_snapshots(
        self, municipality_ids: Iterable[UUID],
    ) -> dict[UUID, ScoreSnapshot]:
        ids = list(municipality_ids)
        if not ids:
            return {}
        async with translate_unavailable():
            result = await self._session.execute(
                select(ScoreSnapshotRow)
                .where(ScoreSnapshotRow.municipality_id.in_(ids))
                .order_by(ScoreSnapshotRow.as_of.asc())
            )
            rows = result.scalars().all()
        return {row.municipality_id: snapshot_from_row(row) for row in rows}

    async def count(self) -> int:
        async with translate_unavailable():
            result = await self._session.execute(
                select(func.count()).select_from(ScoreSnapshotRow)
            )
            return int(result.scalar_one())

    async def mark_pending(self, municipality_id: UUID) -> bool:
        async with translate_unavailable():
            result = await self._session.execute(
                update(MunicipalityRow)
                .where(MunicipalityRow.municipality_id == municipality_id)
                .values(mii_recalc_pending=True)
            )
            await self._session.flush()
        return result.rowcount > 0
