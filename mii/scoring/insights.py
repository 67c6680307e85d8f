"""Benchmark / insight deriver.

Compares a municipality's dimension values with the national per-dimension
averages. A dimension at or beyond ``insight_margin`` above the average is
a strength; at or beyond the margin below it is an improvement area;
anything inside the band is neither.

Deterministic -- no LLM calls.
"""

from __future__ import annotations

from collections.abc import Sequence

from mii.scoring.config import MIIScoringConfig
from mii.scoring.models import (
    DimensionScore,
    Insight,
    InsightClassification,
    InsightReport,
    NationalStats,
)


class InsightDeriver:
    """Classifies dimensions against the national average."""

    def __init__(self, config: MIIScoringConfig | None = None) -> None:
        self._config = config or MIIScoringConfig()

    def derive(
        self,
        dimensions: Sequence[DimensionScore],
        stats: NationalStats,
    ) -> InsightReport:
        """Return strengths (largest delta first) and improvement areas
        (most negative delta first).

        Dimensions without a national average are skipped, so an empty
        ``stats`` yields an empty report.
        """
        margin = self._config.insight_margin
        strengths: list[Insight] = []
        improvements: list[Insight] = []

        for score in dimensions:
            average = stats.dimension_averages.get(score.dimension)
            if average is None:
                continue
            delta = score.value - average
            if delta == 0.0:
                continue
            if delta >= margin:
                strengths.append(
                    Insight(
                        dimension=score.dimension,
                        classification=InsightClassification.STRENGTH,
                        value=score.value,
                        national_average=average,
                        delta=delta,
                    )
                )
            elif delta <= -margin:
                improvements.append(
                    Insight(
                        dimension=score.dimension,
                        classification=InsightClassification.IMPROVEMENT_AREA,
                        value=score.value,
                        national_average=average,
                        delta=delta,
                    )
                )

        strengths.sort(key=lambda i: (-i.delta, i.dimension.value))
        improvements.sort(key=lambda i: (i.delta, i.dimension.value))
        return InsightReport(strengths=strengths, improvement_areas=improvements)
