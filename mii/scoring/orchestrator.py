"""Recalculation orchestrator -- re-runs the MII pipeline for one municipality.

State per request:

    REQUESTED -> FETCHING -> AGGREGATING -> SCORING -> PERSISTING -> COMPLETED
                 (FAILED is reachable from any non-terminal state)

Every attempt runs in its own ``UnitOfWork``, so a retry after a dropped
connection or a cancelled query starts from a clean session. The snapshot
write and the municipality's current-field update go through one
all-or-nothing ``SnapshotStore.commit_snapshot`` call, keyed by
(municipality_id, as_of), so retrying after a failure never duplicates a
snapshot.

Recalculations for the same municipality are serialised by a per-municipality
lock; different municipalities fetch and aggregate in parallel. Ranking is
the one shared step: peers are re-read, ranked, persisted and committed
under a single process-wide ranking lock, so two recalculations never rank
against each other's stale scores.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeVar
from uuid import UUID

import structlog

from mii.config.settings import Settings, get_settings
from mii.models.common import utc_now
from mii.models.entities import FINISHED_PILOT_STAGES, RUNNING_PILOT_STAGES, Pilot
from mii.scoring.aggregator import DimensionAggregator
from mii.scoring.calculator import ScoreCalculator
from mii.scoring.config import MIIScoringConfig
from mii.scoring.errors import ComputationError, MIIError, NotFoundError, TransientError
from mii.scoring.events import EventBus, MIIRecalculated
from mii.scoring.models import (
    BulkRecalculationResult,
    RecalculationResult,
    RecalculationState,
    ScoreSnapshot,
)
from mii.scoring.stores import UnitOfWork, UnitOfWorkFactory

T = TypeVar("T")

logger = structlog.get_logger(__name__)


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class MunicipalityLocks:
    """Per-municipality locks plus the process-wide ranking lock.

    A municipality's lock exists only while a recalculation holds it or
    waits on it; the last one out removes it from the registry.
    """

    def __init__(self) -> None:
        self._entries: dict[UUID, _LockEntry] = {}
        self.ranking = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, municipality_id: object) -> bool:
        return municipality_id in self._entries

    @asynccontextmanager
    async def hold(self, municipality_id: UUID) -> AsyncIterator[asyncio.Lock]:
        """Acquire the municipality's lock for the duration of the block."""
        entry = self._entries.get(municipality_id)
        if entry is None:
            entry = self._entries[municipality_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield entry.lock
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[municipality_id]


# Shared by every orchestrator in the process so per-request instances
# still serialise on the same municipality and on ranking.
_DEFAULT_LOCKS = MunicipalityLocks()


class RecalculationOrchestrator:
    """Fetch -> aggregate -> score -> persist for one municipality."""

    def __init__(
        self,
        unit_of_work: UnitOfWorkFactory,
        *,
        config: MIIScoringConfig | None = None,
        settings: Settings | None = None,
        events: EventBus | None = None,
        locks: MunicipalityLocks | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._unit_of_work = unit_of_work
        self._config = config or MIIScoringConfig()
        self._settings = settings or get_settings()
        self._events = events or EventBus()
        self._locks = locks or _DEFAULT_LOCKS
        self._clock = clock
        self._sleep = sleep
        self._aggregator = DimensionAggregator(config=self._config)
        self._calculator = ScoreCalculator(config=self._config)

    # ----- Retry / backoff -----

    def compute_backoff_delays(self) -> list[float]:
        """Delays slept between attempts (one fewer than the attempt count)."""
        base = self._settings.RECALC_BACKOFF_BASE_S
        return [base * (2**i) for i in range(self._settings.RECALC_MAX_ATTEMPTS - 1)]

    # ----- Public operations -----

    async def recalculate(
        self,
        municipality_id: UUID,
        *,
        as_of: datetime | None = None,
    ) -> RecalculationResult:
        """Recompute, persist, and publish the MII for one municipality.

        ``as_of`` defaults to now and is fixed for every retry attempt.

        Raises:
            NotFoundError: the municipality does not exist.
            InvalidSeriesError: ``as_of`` is older than the latest snapshot.
            TransientError: the entity store stayed unavailable after all attempts.
            ComputationError: anything else went wrong while computing.
        """
        as_of = as_of or self._clock()
        log = logger.bind(municipality_id=str(municipality_id), as_of=as_of.isoformat())

        async with self._locks.hold(municipality_id):
            delays = self.compute_backoff_delays()
            attempt = 0
            while True:
                attempt += 1
                try:
                    result = await self._run_once(municipality_id, as_of, log)
                    break
                except TransientError as exc:
                    if attempt > len(delays):
                        log.error("mii_recalculation_gave_up", attempts=attempt, error=str(exc))
                        raise
                    delay = delays[attempt - 1]
                    log.warning(
                        "mii_recalculation_retry",
                        attempt=attempt,
                        delay_s=delay,
                        error=str(exc),
                    )
                    await self._sleep(delay)

        await self._events.publish(
            MIIRecalculated(
                municipality_id=municipality_id,
                snapshot_id=result.snapshot_id,
                overall_score=result.overall_score,
                rank=result.rank,
                as_of=result.as_of,
            )
        )
        return result

    async def recalculate_all(self) -> BulkRecalculationResult:
        """Recalculate every active municipality, one after another."""
        async with self._unit_of_work() as uow:
            municipalities = await self._io(
                uow.entities.list_municipalities(is_active=True, is_deleted=False),
                None,
            )
        return await self._recalculate_many([m.municipality_id for m in municipalities])

    async def recalculate_pending(self) -> BulkRecalculationResult:
        """Recalculate municipalities flagged with ``mii_recalc_pending``."""
        async with self._unit_of_work() as uow:
            municipalities = await self._io(
                uow.entities.list_municipalities(
                    is_deleted=False, mii_recalc_pending=True,
                ),
                None,
            )
        return await self._recalculate_many([m.municipality_id for m in municipalities])

    async def mark_pending(self, municipality_id: UUID) -> None:
        """Flag a municipality so the next pending sweep recalculates it."""
        async with self._unit_of_work() as uow:
            if not await self._io(uow.snapshots.mark_pending(municipality_id), municipality_id):
                raise NotFoundError(
                    f"Municipality {municipality_id} not found.",
                    municipality_id=municipality_id,
                )
            await self._io(uow.commit(), municipality_id)

    # ----- Pipeline -----

    async def _recalculate_many(self, ids: list[UUID]) -> BulkRecalculationResult:
        bulk = BulkRecalculationResult()
        for municipality_id in sorted(ids, key=str):
            try:
                bulk.completed.append(await self.recalculate(municipality_id))
            except MIIError as exc:
                bulk.failed[municipality_id] = f"{type(exc).__name__}: {exc}"
        logger.info(
            "mii_bulk_recalculation_finished",
            completed=len(bulk.completed),
            failed=len(bulk.failed),
        )
        return bulk

    async def _io(self, awaitable: Awaitable[T], municipality_id: UUID | None) -> T:
        """Await an entity/snapshot store call under the configured timeout."""
        try:
            return await asyncio.wait_for(
                awaitable, timeout=self._settings.ENTITY_STORE_TIMEOUT_S,
            )
        except TimeoutError as exc:
            raise TransientError(
                "Entity store call timed out.", municipality_id=municipality_id,
            ) from exc

    async def _run_once(
        self,
        municipality_id: UUID,
        as_of: datetime,
        log: structlog.stdlib.BoundLogger,
    ) -> RecalculationResult:
        state = RecalculationState.REQUESTED
        context: dict[str, object] = {}

        def advance(next_state: RecalculationState) -> RecalculationState:
            log.debug("mii_recalculation_state", state=next_state.value)
            return next_state

        try:
            async with self._unit_of_work() as uow:
                state = advance(RecalculationState.FETCHING)
                municipality = await self._io(
                    uow.entities.get_municipality(municipality_id), municipality_id,
                )
                if municipality is None or municipality.is_deleted:
                    raise NotFoundError(
                        f"Municipality {municipality_id} not found.",
                        municipality_id=municipality_id,
                    )
                challenges = await self._io(
                    uow.entities.list_challenges(
                        municipality_id=municipality_id, is_deleted=False,
                    ),
                    municipality_id,
                )
                pilots = await self._io(
                    uow.entities.list_pilots(
                        municipality_id=municipality_id, is_deleted=False,
                    ),
                    municipality_id,
                )
                partnerships = await self._io(
                    uow.entities.list_partnerships(
                        municipality_id=municipality_id, is_deleted=False,
                    ),
                    municipality_id,
                )
                context.update(
                    challenges=len(challenges),
                    pilots=len(pilots),
                    partnerships=len(partnerships),
                    population=municipality.population,
                )

                state = advance(RecalculationState.AGGREGATING)
                dimensions = self._aggregator.aggregate(
                    municipality_id, challenges, pilots, partnerships,
                    population=municipality.population,
                )
                context["dimensions"] = {d.dimension.value: d.value for d in dimensions}

                state = advance(RecalculationState.SCORING)
                overall = self._calculator.overall_score(dimensions)
                context["overall_score"] = overall

                # No other recalculation can change a score until this
                # commit lands.
                async with self._locks.ranking:
                    peers = await self._io(
                        uow.entities.list_municipalities(is_active=True, is_deleted=False),
                        municipality_id,
                    )
                    context["peers"] = len(peers)
                    scores = self._calculator.rankable_scores(
                        p for p in peers if p.municipality_id != municipality_id
                    )
                    if municipality.is_active:
                        scores[municipality_id] = overall
                    ranks = self._calculator.rank(scores)

                    state = advance(RecalculationState.PERSISTING)
                    snapshot = ScoreSnapshot(
                        municipality_id=municipality_id,
                        as_of=as_of,
                        assessment_year=as_of.year,
                        overall_score=overall,
                        dimension_values={d.dimension: d.value for d in dimensions},
                        rank=ranks.get(municipality_id),
                        previous_rank=municipality.mii_rank,
                        formula_version=self._aggregator.formula_version,
                    )
                    committed = await self._persist(uow, snapshot, ranks, pilots)

                state = advance(RecalculationState.COMPLETED)
        except MIIError as exc:
            log.warning(
                "mii_recalculation_failed",
                state=RecalculationState.FAILED.value,
                failed_in=state.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if exc.municipality_id is None:
                exc.municipality_id = municipality_id
            raise
        except Exception as exc:
            log.exception(
                "mii_recalculation_failed",
                state=RecalculationState.FAILED.value,
                failed_in=state.value,
                inputs=context,
            )
            raise ComputationError(
                f"Recalculation failed in {state.value}: {exc}",
                municipality_id=municipality_id,
            ) from exc

        log.info(
            "mii_recalculated",
            overall_score=committed.overall_score,
            rank=committed.rank,
            snapshot_id=str(committed.snapshot_id),
        )
        return RecalculationResult(
            municipality_id=municipality_id,
            overall_score=committed.overall_score,
            snapshot_id=committed.snapshot_id,
            rank=committed.rank,
            as_of=committed.as_of,
        )

    async def _persist(
        self,
        uow: UnitOfWork,
        snapshot: ScoreSnapshot,
        ranks: dict[UUID, int],
        pilots: Sequence[Pilot],
    ) -> ScoreSnapshot:
        """Write the snapshot and ranks, then commit the unit of work."""
        mid = snapshot.municipality_id
        committed = await self._io(
            uow.snapshots.commit_snapshot(
                snapshot,
                ranks=ranks,
                active_pilots=sum(1 for p in pilots if p.stage in RUNNING_PILOT_STAGES),
                completed_pilots=sum(1 for p in pilots if p.stage in FINISHED_PILOT_STAGES),
            ),
            mid,
        )
        await self._io(uow.commit(), mid)
        return committed
