"""Tests for MIIViewService: drill-down view, rankings, calculation stats."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from uuid_extensions import uuid7

from mii.config.settings import Settings
from mii.scoring.errors import InvalidSeriesError, NotFoundError
from mii.scoring.models import MIIDimension, TrendDirection, TrendPoint
from mii.scoring.orchestrator import MunicipalityLocks, RecalculationOrchestrator
from mii.scoring.service import MIIViewService
from mii.scoring.stores import InMemoryUnitOfWork

from mii_factories import make_snapshot


def _as_of(year: int) -> datetime:
    return datetime(year, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def service(entity_store, snapshot_store) -> MIIViewService:
    return MIIViewService(entity_store, snapshot_store)


@pytest.fixture
def orchestrator(entity_store, snapshot_store) -> RecalculationOrchestrator:
    return RecalculationOrchestrator(
        lambda: InMemoryUnitOfWork(entity_store, snapshot_store),
        settings=Settings(RECALC_BACKOFF_BASE_S=0.0),
        locks=MunicipalityLocks(),
    )


def _by_name(entity_store, name: str):
    return next(m for m in entity_store.municipalities.values() if m.name_en == name)


async def _seed_peer_snapshots(entity_store, snapshot_store, dimension_value: float) -> None:
    for name in ("Leader", "Laggard"):
        peer = _by_name(entity_store, name)
        await snapshot_store.commit_snapshot(
            make_snapshot(
                peer.municipality_id,
                2025,
                peer.mii_score,
                month=1,
                dimension_value=dimension_value,
            ),
            ranks={},
            active_pilots=0,
            completed_pilots=0,
        )


class TestGetMIIView:
    @pytest.mark.anyio
    async def test_unknown_municipality(self, service) -> None:
        with pytest.raises(NotFoundError):
            await service.get_mii_view(uuid7())

    @pytest.mark.anyio
    async def test_without_history(self, service, reference_id) -> None:
        view = await service.get_mii_view(reference_id)

        assert view.name_en == "Reference"
        assert view.overall_score is None
        assert view.rank is None
        assert view.trend == []
        assert view.yoy_growth is None
        assert view.insufficient_history is True
        assert view.trend_direction == TrendDirection.FLAT
        assert view.national_average == pytest.approx(60.0)
        assert len(view.dimensions) == 6
        # No peer has dimension history yet, so nothing to compare against.
        assert view.strengths == []
        assert view.improvement_areas == []

    @pytest.mark.anyio
    async def test_entity_counts(self, service, reference_id) -> None:
        view = await service.get_mii_view(reference_id)
        assert view.challenge_count == 6
        assert view.active_pilots == 2
        assert view.completed_pilots == 3

    @pytest.mark.anyio
    async def test_live_dimensions(self, service, reference_id) -> None:
        view = await service.get_mii_view(reference_id)
        values = {d.dimension: d.value for d in view.dimensions}
        assert values[MIIDimension.LEADERSHIP] == pytest.approx(55.0)
        assert values[MIIDimension.STRATEGY] == pytest.approx(83.333, abs=1e-3)
        assert values[MIIDimension.CULTURE] == pytest.approx(40.0)
        assert values[MIIDimension.PARTNERSHIPS] == pytest.approx(20.0)
        assert values[MIIDimension.CAPABILITIES] == pytest.approx(16.667, abs=1e-3)
        assert values[MIIDimension.IMPACT] == pytest.approx(60.0)

    @pytest.mark.anyio
    async def test_score_rank_and_trend(self, service, orchestrator, reference_id) -> None:
        await orchestrator.recalculate(reference_id, as_of=_as_of(2024))
        await orchestrator.recalculate(reference_id, as_of=_as_of(2025))

        view = await service.get_mii_view(reference_id)

        assert view.overall_score == pytest.approx(47.25)
        assert view.rank == 2
        assert view.national_average == pytest.approx((90.0 + 47.25 + 30.0) / 3)
        assert view.trend == [TrendPoint(2024, 47.25), TrendPoint(2025, 47.25)]
        assert view.yoy_growth == 0.0
        assert view.trend_direction == TrendDirection.FLAT
        assert view.insufficient_history is False

    @pytest.mark.anyio
    async def test_single_year_history(self, service, orchestrator, reference_id) -> None:
        await orchestrator.recalculate(reference_id, as_of=_as_of(2025))
        await orchestrator.recalculate(
            reference_id, as_of=datetime(2025, 9, 1, tzinfo=timezone.utc),
        )

        view = await service.get_mii_view(reference_id)
        assert view.trend == [TrendPoint(2025, 47.25)]
        assert view.insufficient_history is True
        assert view.yoy_growth is None

    @pytest.mark.anyio
    async def test_strengths_and_improvement_areas(
        self, service, orchestrator, entity_store, snapshot_store, reference_id,
    ) -> None:
        await _seed_peer_snapshots(entity_store, snapshot_store, dimension_value=50.0)
        await orchestrator.recalculate(reference_id, as_of=_as_of(2025))

        view = await service.get_mii_view(reference_id)

        assert [i.dimension for i in view.strengths] == [
            MIIDimension.STRATEGY,
            MIIDimension.IMPACT,
        ]
        assert [i.dimension for i in view.improvement_areas] == [
            MIIDimension.CAPABILITIES,
            MIIDimension.PARTNERSHIPS,
            MIIDimension.CULTURE,
        ]
        impact = view.strengths[1]
        assert impact.national_average == pytest.approx(160.0 / 3)
        assert impact.delta == pytest.approx(60.0 - 160.0 / 3)

    @pytest.mark.anyio
    async def test_malformed_history_rejected(
        self, service, snapshot_store, reference_id,
    ) -> None:
        # A later as_of carrying an earlier assessment year.
        bad = [
            make_snapshot(reference_id, 2026, 50.0).model_copy(
                update={"as_of": datetime(2025, 1, 1, tzinfo=timezone.utc)}
            ),
            make_snapshot(reference_id, 2025, 55.0),
        ]
        for snapshot in bad:
            await snapshot_store.commit_snapshot(
                snapshot, ranks={}, active_pilots=0, completed_pilots=0,
            )

        with pytest.raises(InvalidSeriesError):
            await service.get_mii_view(reference_id)


class TestRankings:
    @pytest.mark.anyio
    async def test_only_scored_active_municipalities(self, service) -> None:
        entries = await service.rankings()
        assert [(e.rank, e.name_en) for e in entries] == [(1, "Leader"), (2, "Laggard")]

    @pytest.mark.anyio
    async def test_after_recalculation(self, service, orchestrator, reference_id) -> None:
        await orchestrator.recalculate(reference_id)
        entries = await service.rankings()
        assert [e.name_en for e in entries] == ["Leader", "Reference", "Laggard"]
        assert entries[1].overall_score == pytest.approx(47.25)

    @pytest.mark.anyio
    async def test_region_filter_keeps_national_rank(self, service, entity_store) -> None:
        laggard = _by_name(entity_store, "Laggard")
        entity_store.municipalities[laggard.municipality_id] = laggard.model_copy(
            update={"region": "Makkah"}
        )

        entries = await service.rankings(region="Makkah")
        assert [(e.rank, e.name_en, e.region) for e in entries] == [(2, "Laggard", "Makkah")]

        riyadh = await service.rankings(region="Riyadh")
        assert [(e.rank, e.name_en) for e in riyadh] == [(1, "Leader")]

    @pytest.mark.anyio
    async def test_unknown_region_is_empty(self, service) -> None:
        assert await service.rankings(region="Tabuk") == []

    @pytest.mark.anyio
    async def test_empty(self, entity_store, snapshot_store) -> None:
        entity_store.municipalities.clear()
        service = MIIViewService(entity_store, snapshot_store)
        assert await service.rankings() == []


class TestCalculationStats:
    @pytest.mark.anyio
    async def test_before_any_snapshot(self, service) -> None:
        stats = await service.calculation_stats()
        assert stats.total_snapshots == 0
        assert stats.municipalities_scored == 2
        assert stats.average_score == pytest.approx(60.0)
        assert stats.pending_recalculation == 0
        assert stats.last_calculated_at is None

    @pytest.mark.anyio
    async def test_after_recalculation(self, service, orchestrator, reference_id) -> None:
        await orchestrator.mark_pending(reference_id)
        assert (await service.calculation_stats()).pending_recalculation == 1

        result = await orchestrator.recalculate(reference_id, as_of=_as_of(2025))
        stats = await service.calculation_stats()

        assert stats.total_snapshots == 1
        assert stats.municipalities_scored == 3
        assert stats.pending_recalculation == 0
        assert stats.last_calculated_at == result.as_of
