"""Trend analyzer -- YoY growth and direction over a municipality's history.

Input must already be ordered by year with one snapshot per year. Unordered
or duplicate years are rejected rather than sorted, so upstream data-quality
problems surface instead of being masked. Missing history is reported as
``insufficient_history``; no synthetic points are ever filled in.

Deterministic -- no LLM calls.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from mii.scoring.config import MIIScoringConfig
from mii.scoring.errors import InvalidSeriesError
from mii.scoring.models import ScoreSnapshot, TrendDirection, TrendPoint

logger = logging.getLogger(__name__)


class TrendSeries:
    """Lazy, finite, restartable sequence of TrendPoints.

    Points are built on demand; every ``iter()`` starts again from the
    first year.
    """

    def __init__(self, snapshots: Sequence[ScoreSnapshot]) -> None:
        self._snapshots = tuple(snapshots)

    def __iter__(self) -> Iterator[TrendPoint]:
        for snapshot in self._snapshots:
            yield TrendPoint(year=snapshot.assessment_year, score=snapshot.overall_score)

    def __len__(self) -> int:
        return len(self._snapshots)

    def __repr__(self) -> str:
        return f"TrendSeries(len={len(self)})"


@dataclass(frozen=True)
class TrendAnalysis:
    """Result of analysing one municipality's yearly history.

    ``yoy_growth`` is None whenever ``insufficient_history`` is True.
    """

    points: TrendSeries
    yoy_growth: float | None
    direction: TrendDirection
    insufficient_history: bool

    @classmethod
    def empty(cls) -> "TrendAnalysis":
        return cls(
            points=TrendSeries(()),
            yoy_growth=None,
            direction=TrendDirection.FLAT,
            insufficient_history=True,
        )


def yearly_series(snapshots: Sequence[ScoreSnapshot]) -> list[ScoreSnapshot]:
    """Collapse an as_of-ordered history to the latest snapshot per year.

    Raises InvalidSeriesError if ``as_of`` goes backwards or an assessment
    year appears after a later one.
    """
    yearly: list[ScoreSnapshot] = []
    previous: ScoreSnapshot | None = None
    for snapshot in snapshots:
        if previous is not None:
            if snapshot.as_of < previous.as_of:
                raise InvalidSeriesError(
                    f"Snapshot {snapshot.snapshot_id} is older than its predecessor.",
                    municipality_id=snapshot.municipality_id,
                )
            if snapshot.assessment_year < previous.assessment_year:
                raise InvalidSeriesError(
                    f"Assessment year {snapshot.assessment_year} follows "
                    f"{previous.assessment_year}.",
                    municipality_id=snapshot.municipality_id,
                )
        if yearly and yearly[-1].assessment_year == snapshot.assessment_year:
            yearly[-1] = snapshot
        else:
            yearly.append(snapshot)
        previous = snapshot
    return yearly


class TrendAnalyzer:
    """Computes YoY growth and a three-valued direction."""

    def __init__(self, config: MIIScoringConfig | None = None) -> None:
        self._config = config or MIIScoringConfig()

    def classify(self, delta: float) -> TrendDirection:
        epsilon = self._config.trend_epsilon
        if delta > epsilon:
            return TrendDirection.UP
        if delta < -epsilon:
            return TrendDirection.DOWN
        return TrendDirection.FLAT

    def analyze(self, snapshots: Sequence[ScoreSnapshot]) -> TrendAnalysis:
        """Analyse a strictly year-ascending snapshot sequence.

        Raises InvalidSeriesError on empty, unordered, or duplicate-year
        input, or when snapshots belong to different municipalities.
        """
        self._validate(snapshots)

        if len(snapshots) < 2:
            return TrendAnalysis(
                points=TrendSeries(snapshots),
                yoy_growth=None,
                direction=TrendDirection.FLAT,
                insufficient_history=True,
            )

        growth = snapshots[-1].overall_score - snapshots[-2].overall_score
        return TrendAnalysis(
            points=TrendSeries(snapshots),
            yoy_growth=growth,
            direction=self.classify(growth),
            insufficient_history=False,
        )

    @staticmethod
    def _validate(snapshots: Sequence[ScoreSnapshot]) -> None:
        if not snapshots:
            raise InvalidSeriesError("Trend analysis requires at least one snapshot.")

        municipality_id = snapshots[0].municipality_id
        for prev, curr in zip(snapshots, snapshots[1:]):
            if curr.municipality_id != municipality_id:
                raise InvalidSeriesError(
                    "Snapshots belong to more than one municipality.",
                    municipality_id=municipality_id,
                )
            if curr.assessment_year == prev.assessment_year:
                logger.warning(
                    "Duplicate assessment year %d for municipality %s",
                    curr.assessment_year, municipality_id,
                )
                raise InvalidSeriesError(
                    f"Duplicate assessment year {curr.assessment_year}.",
                    municipality_id=municipality_id,
                )
            if curr.assessment_year < prev.assessment_year:
                logger.warning(
                    "Unordered assessment years %d -> %d for municipality %s",
                    prev.assessment_year, curr.assessment_year, municipality_id,
                )
                raise InvalidSeriesError(
                    f"Assessment years out of order: {prev.assessment_year} "
                    f"before {curr.assessment_year}.",
                    municipality_id=municipality_id,
                )
