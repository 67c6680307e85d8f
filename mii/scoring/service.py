"""Drill-down read service for the MII.

Builds the per-municipality view (score, rank, radar dimensions, trend,
strengths, improvement areas), the national ranking table, and the admin
calculation overview. Reads never wait on a running recalculation: the
score comes from the latest committed snapshot while the radar dimensions
are aggregated from live entity-store state.

Deterministic -- no LLM calls.
"""

from __future__ import annotations

import logging
from uuid import UUID

from mii.models.entities import FINISHED_PILOT_STAGES, RUNNING_PILOT_STAGES
from mii.scoring.aggregator import DimensionAggregator
from mii.scoring.calculator import ScoreCalculator
from mii.scoring.config import MIIScoringConfig
from mii.scoring.errors import InvalidSeriesError, NotFoundError
from mii.scoring.insights import InsightDeriver
from mii.scoring.models import (
    CalculationStats,
    MIIView,
    NationalStats,
    RankingEntry,
)
from mii.scoring.stores import EntityStore, SnapshotStore
from mii.scoring.trend import TrendAnalysis, TrendAnalyzer, yearly_series

logger = logging.getLogger(__name__)


class MIIViewService:
    """Read-side composition of the MII components."""

    def __init__(
        self,
        entities: EntityStore,
        snapshots: SnapshotStore,
        config: MIIScoringConfig | None = None,
    ) -> None:
        self._entities = entities
        self._snapshots = snapshots
        self._config = config or MIIScoringConfig()
        self._aggregator = DimensionAggregator(config=self._config)
        self._calculator = ScoreCalculator(config=self._config)
        self._analyzer = TrendAnalyzer(config=self._config)
        self._deriver = InsightDeriver(config=self._config)

    async def national_stats(self) -> NationalStats:
        """National averages from every active municipality's latest snapshot."""
        peers = await self._entities.list_municipalities(is_active=True, is_deleted=False)
        latest = await self._snapshots.latest_snapshots(m.municipality_id for m in peers)
        return self._calculator.national_stats(
            peers,
            {mid: snapshot.dimension_values for mid, snapshot in latest.items()},
        )

    async def get_mii_view(self, municipality_id: UUID) -> MIIView:
        """Drill-down view for one municipality.

        Raises NotFoundError for an unknown municipality and
        InvalidSeriesError when its stored history is malformed.
        """
        municipality = await self._entities.get_municipality(municipality_id)
        if municipality is None or municipality.is_deleted:
            raise NotFoundError(
                f"Municipality {municipality_id} not found.",
                municipality_id=municipality_id,
            )

        dimensions = await self._aggregator.aggregate_for(self._entities, municipality_id)

        history = await self._snapshots.list_snapshots(municipality_id)
        try:
            yearly = yearly_series(history)
            trend = self._analyzer.analyze(yearly) if yearly else TrendAnalysis.empty()
        except InvalidSeriesError:
            logger.error(
                "Data integrity alert: invalid MII history for municipality %s",
                municipality_id,
            )
            raise

        peers = await self._entities.list_municipalities(is_active=True, is_deleted=False)
        ranks = self._calculator.rank(self._calculator.rankable_scores(peers))
        stats = await self.national_stats()
        insights = self._deriver.derive(dimensions, stats)

        pilots = await self._entities.list_pilots(
            municipality_id=municipality_id, is_deleted=False,
        )
        challenges = await self._entities.list_challenges(
            municipality_id=municipality_id, is_deleted=False,
        )

        return MIIView(
            municipality_id=municipality.municipality_id,
            name_en=municipality.name_en,
            name_ar=municipality.name_ar,
            region=municipality.region,
            city_type=municipality.city_type,
            population=municipality.population,
            overall_score=history[-1].overall_score if history else None,
            rank=ranks.get(municipality_id),
            national_average=stats.average_score,
            dimensions=dimensions,
            trend=list(trend.points),
            yoy_growth=trend.yoy_growth,
            trend_direction=trend.direction,
            insufficient_history=trend.insufficient_history,
            strengths=insights.strengths,
            improvement_areas=insights.improvement_areas,
            challenge_count=len(challenges),
            active_pilots=sum(1 for p in pilots if p.stage in RUNNING_PILOT_STAGES),
            completed_pilots=sum(1 for p in pilots if p.stage in FINISHED_PILOT_STAGES),
        )

    async def rankings(self, region: str | None = None) -> list[RankingEntry]:
        """National ranking table, best first.

        ``region`` narrows the table to one region; each entry keeps its
        national rank, so a filtered table can start below rank 1.
        """
        peers = await self._entities.list_municipalities(is_active=True, is_deleted=False)
        by_id = {m.municipality_id: m for m in peers}
        scores = self._calculator.rankable_scores(peers)
        ranks = self._calculator.rank(scores)
        if region is not None:
            ranks = {mid: rank for mid, rank in ranks.items() if by_id[mid].region == region}
        entries = [
            RankingEntry(
                rank=rank,
                municipality_id=mid,
                name_en=by_id[mid].name_en,
                name_ar=by_id[mid].name_ar,
                region=by_id[mid].region,
                overall_score=scores[mid],
            )
            for mid, rank in ranks.items()
        ]
        return sorted(entries, key=lambda e: e.rank)

    async def calculation_stats(self) -> CalculationStats:
        """Snapshot totals and recalculation backlog."""
        municipalities = await self._entities.list_municipalities(is_deleted=False)
        scored = [m for m in municipalities if m.mii_score is not None]
        calculated = [
            m.mii_last_calculated_at
            for m in municipalities
            if m.mii_last_calculated_at is not None
        ]
        return CalculationStats(
            total_snapshots=await self._snapshots.count(),
            municipalities_scored=len(scored),
            average_score=(
                sum(m.mii_score for m in scored) / len(scored) if scored else None
            ),
            pending_recalculation=sum(1 for m in municipalities if m.mii_recalc_pending),
            last_calculated_at=max(calculated) if calculated else None,
        )
