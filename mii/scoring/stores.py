"""Store ABCs and in-memory implementations for the MII engine.

Provides three abstract contracts:
- ``EntityStore`` for the read-only entity fetchers (municipalities,
  challenges, pilots, partnerships) filtered by simple equality predicates.
- ``SnapshotStore`` for the append-only score history and the
  all-or-nothing write that moves a municipality's current fields onto a
  new snapshot.
- ``UnitOfWork`` for one recalculation attempt: a fresh pair of stores
  that is committed or rolled back as a whole.

In-memory implementations are provided for testing. Production deployments
use the SQLAlchemy-backed stores in ``mii.repositories``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from types import TracebackType
from uuid import UUID

from mii.models.entities import (
    Challenge,
    Municipality,
    Partnership,
    Pilot,
)
from mii.scoring.errors import InvalidSeriesError
from mii.scoring.models import ScoreSnapshot


# ---------------------------------------------------------------------------
# Entity store
# ---------------------------------------------------------------------------


class EntityStore(ABC):
    """Read access to the entities the index is computed from.

    Every filter left as ``None`` is not applied.
    """

    @abstractmethod
    async def list_municipalities(
        self,
        *,
        municipality_id: UUID | None = None,
        is_active: bool | None = None,
        is_deleted: bool | None = None,
        mii_recalc_pending: bool | None = None,
    ) -> list[Municipality]: ...

    @abstractmethod
    async def list_challenges(
        self,
        *,
        municipality_id: UUID | None = None,
        is_deleted: bool | None = None,
    ) -> list[Challenge]: ...

    @abstractmethod
    async def list_pilots(
        self,
        *,
        municipality_id: UUID | None = None,
        is_deleted: bool | None = None,
    ) -> list[Pilot]: ...

    @abstractmethod
    async def list_partnerships(
        self,
        *,
        municipality_id: UUID | None = None,
        is_deleted: bool | None = None,
    ) -> list[Partnership]: ...

    async def get_municipality(self, municipality_id: UUID) -> Municipality | None:
        found = await self.list_municipalities(municipality_id=municipality_id)
        return found[0] if found else None


# ---------------------------------------------------------------------------
# Snapshot store
# ---------------------------------------------------------------------------


class SnapshotStore(ABC):
    """Append-only score history plus the current-field update."""

    @abstractmethod
    async def commit_snapshot(
        self,
        snapshot: ScoreSnapshot,
        *,
        ranks: dict[UUID, int],
        active_pilots: int,
        completed_pilots: int,
    ) -> ScoreSnapshot:
        """Upsert ``snapshot`` by (municipality_id, as_of) and update current fields.

        Either everything is written or nothing is: the snapshot row, the
        municipality's score/rank/pilot counters, its pending flag, and
        the ranks of every municipality in ``ranks``.

        Raises InvalidSeriesError when ``snapshot.as_of`` is older than the
        municipality's latest stored snapshot, so the current fields always
        match the most recent snapshot.
        """

    @abstractmethod
    async def list_snapshots(self, municipality_id: UUID) -> list[ScoreSnapshot]:
        """All snapshots for a municipality, oldest ``as_of`` first."""

    @abstractmethod
    async def count(self) -> int: ...

    @abstractmethod
    async def mark_pending(self, municipality_id: UUID) -> bool:
        """Flag a municipality for recalculation. Returns False if unknown."""

    @abstractmethod
    async def latest_snapshots(
        self, municipality_ids: Iterable[UUID],
    ) -> dict[UUID, ScoreSnapshot]:
        """Latest snapshot per municipality; ids with no history are absent."""

    async def latest_snapshot(self, municipality_id: UUID) -> ScoreSnapshot | None:
        snapshots = await self.list_snapshots(municipality_id)
        return snapshots[-1] if snapshots else None


def reject_stale_snapshot(
    snapshot: ScoreSnapshot, latest: ScoreSnapshot | None,
) -> None:
    """Raise InvalidSeriesError if ``snapshot`` predates ``latest``."""
    if latest is not None and snapshot.as_of < latest.as_of:
        raise InvalidSeriesError(
            f"Snapshot as_of {snapshot.as_of.isoformat()} is older than the "
            f"latest stored snapshot ({latest.as_of.isoformat()}).",
            municipality_id=snapshot.municipality_id,
        )


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


class UnitOfWork(ABC):
    """Stores scoped to one recalculation attempt.

    Used as ``async with factory() as uow``. Leaving the block with an
    exception rolls back; a successful attempt must call ``commit()``
    itself. A retry opens a new unit of work, so it never reuses a
    transaction that failed.
    """

    entities: EntityStore
    snapshots: SnapshotStore

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> UnitOfWork:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is not None:
                await self.rollback()
        finally:
            await self.close()


UnitOfWorkFactory = Callable[[], UnitOfWork]


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


def _matches(record: object, **filters: object) -> bool:
    return all(
        getattr(record, name) == wanted
        for name, wanted in filters.items()
        if wanted is not None
    )


class InMemoryEntityStore(EntityStore):
    """In-memory implementation for tests.

    Production replaces with the PostgreSQL-backed store.
    """

    def __init__(
        self,
        *,
        municipalities: Iterable[Municipality] = (),
        challenges: Iterable[Challenge] = (),
        pilots: Iterable[Pilot] = (),
        partnerships: Iterable[Partnership] = (),
    ) -> None:
        self.municipalities: dict[UUID, Municipality] = {
            m.municipality_id: m for m in municipalities
        }
        self.challenges: list[Challenge] = list(challenges)
        self.pilots: list[Pilot] = list(pilots)
        self.partnerships: list[Partnership] = list(partnerships)

    async def list_municipalities(
        self,
        *,
        municipality_id: UUID | None = None,
        is_active: bool | None = None,
        is_deleted: bool | None = None,
        mii_recalc_pending: bool | None = None,
    ) -> list[Municipality]:
        return [
            m
            for m in self.municipalities.values()
            if _matches(
                m,
                municipality_id=municipality_id,
                is_active=is_active,
                is_deleted=is_deleted,
                mii_recalc_pending=mii_recalc_pending,
            )
        ]

    async def list_challenges(
        self,
        *,
        municipality_id: UUID | None = None,
        is_deleted: bool | None = None,
    ) -> list[Challenge]:
        return [
            c for c in self.challenges
            if _matches(c, municipality_id=municipality_id, is_deleted=is_deleted)
        ]

    async def list_pilots(
        self,
        *,
        municipality_id: UUID | None = None,
        is_deleted: bool | None = None,
    ) -> list[Pilot]:
        return [
            p for p in self.pilots
            if _matches(p, municipality_id=municipality_id, is_deleted=is_deleted)
        ]

    async def list_partnerships(
        self,
        *,
        municipality_id: UUID | None = None,
        is_deleted: bool | None = None,
    ) -> list[Partnership]:
        return [
            p for p in self.partnerships
            if _matches(p, municipality_id=municipality_id, is_deleted=is_deleted)
        ]


class InMemorySnapshotStore(SnapshotStore):
    """In-memory snapshot history that writes current fields into an
    ``InMemoryEntityStore``.

    The commit builds every new record first and only then swaps them in,
    so a failure part-way leaves both stores untouched.
    """

    def __init__(self, entities: InMemoryEntityStore) -> None:
        self._entities = entities
        self._snapshots: dict[tuple[UUID, object], ScoreSnapshot] = {}

    async def commit_snapshot(
        self,
        snapshot: ScoreSnapshot,
        *,
        ranks: dict[UUID, int],
        active_pilots: int,
        completed_pilots: int,
    ) -> ScoreSnapshot:
        mid = snapshot.municipality_id
        current = self._entities.municipalities.get(mid)
        if current is None:
            msg = f"Municipality {mid} not found."
            raise KeyError(msg)
        reject_stale_snapshot(snapshot, await self.latest_snapshot(mid))

        updated: dict[UUID, Municipality] = {}
        for other_id, rank in ranks.items():
            other = self._entities.municipalities.get(other_id)
            if other is not None and other_id != mid:
                updated[other_id] = other.model_copy(update={"mii_rank": rank})
        updated[mid] = current.model_copy(
            update={
                "mii_score": snapshot.overall_score,
                "mii_rank": snapshot.rank,
                "active_pilots": active_pilots,
                "completed_pilots": completed_pilots,
                "mii_recalc_pending": False,
                "mii_last_calculated_at": snapshot.as_of,
            }
        )

        self._snapshots[(mid, snapshot.as_of)] = snapshot
        self._entities.municipalities.update(updated)
        return snapshot

    async def list_snapshots(self, municipality_id: UUID) -> list[ScoreSnapshot]:
        found = [s for s in self._snapshots.values() if s.municipality_id == municipality_id]
        return sorted(found, key=lambda s: s.as_of)

    async def latest_snapshots(
        self, municipality_ids: Iterable[UUID],
    ) -> dict[UUID, ScoreSnapshot]:
        wanted = set(municipality_ids)
        latest: dict[UUID, ScoreSnapshot] = {}
        for snapshot in sorted(self._snapshots.values(), key=lambda s: s.as_of):
            if snapshot.municipality_id in wanted:
                latest[snapshot.municipality_id] = snapshot
        return latest

    async def count(self) -> int:
        return len(self._snapshots)

    async def mark_pending(self, municipality_id: UUID) -> bool:
        current = self._entities.municipalities.get(municipality_id)
        if current is None:
            return False
        self._entities.municipalities[municipality_id] = current.model_copy(
            update={"mii_recalc_pending": True}
        )
        return True


class InMemoryUnitOfWork(UnitOfWork):
    """Hands out the same in-memory stores to every attempt.

    ``InMemorySnapshotStore.commit_snapshot`` is already all-or-nothing,
    so commit and rollback have nothing left to do. The counters let
    tests check how attempts were closed.
    """

    def __init__(
        self, entities: InMemoryEntityStore, snapshots: InMemorySnapshotStore,
    ) -> None:
        self.entities = entities
        self.snapshots = snapshots
        self.commits = 0
        self.rollbacks = 0

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1
