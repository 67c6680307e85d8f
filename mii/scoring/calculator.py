"""Score calculator -- overall index, national rank, national averages.

Scores stay real-valued here. Rounding is a presentation concern.

Deterministic -- no LLM calls.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from uuid import UUID

from mii.models.entities import Municipality
from mii.scoring.aggregator import clamp_score
from mii.scoring.config import MIIScoringConfig
from mii.scoring.errors import ComputationError
from mii.scoring.models import DimensionScore, MIIDimension, NationalStats


def dimension_map(dimensions: Sequence[DimensionScore]) -> dict[MIIDimension, float]:
    """Index a dimension set by dimension, rejecting anything but the six."""
    seen = [d.dimension for d in dimensions]
    if len(seen) != len(MIIDimension) or set(seen) != set(MIIDimension):
        raise ComputationError(
            f"Expected exactly the six MII dimensions, got {sorted(seen)}."
        )
    return {d.dimension: clamp_score(d.value) for d in dimensions}


class ScoreCalculator:
    """Combines dimensions with fixed weights and ranks municipalities."""

    def __init__(self, config: MIIScoringConfig | None = None) -> None:
        self._config = config or MIIScoringConfig()

    @property
    def weights(self) -> dict[MIIDimension, float]:
        return dict(self._config.dimension_weights)

    def overall_score(self, dimensions: Sequence[DimensionScore]) -> float:
        """Weighted sum of the six clamped dimension values.

        Raises ComputationError unless exactly six distinct dimensions
        are supplied.
        """
        values = dimension_map(dimensions)
        total = sum(
            self._config.dimension_weights[dim] * value
            for dim, value in values.items()
        )
        return clamp_score(total)

    @staticmethod
    def rank(scores: Mapping[UUID, float]) -> dict[UUID, int]:
        """1-based national rank: score descending, id ascending on ties."""
        ordered = sorted(scores.items(), key=lambda item: (-item[1], str(item[0])))
        return {mid: position for position, (mid, _) in enumerate(ordered, start=1)}

    @staticmethod
    def rankable_scores(municipalities: Iterable[Municipality]) -> dict[UUID, float]:
        """Current scores of active, non-deleted, scored municipalities."""
        return {
            m.municipality_id: m.mii_score
            for m in municipalities
            if m.is_rankable and m.mii_score is not None
        }

    @staticmethod
    def national_stats(
        municipalities: Iterable[Municipality],
        dimension_sets: Mapping[UUID, Mapping[MIIDimension, float]] | None = None,
    ) -> NationalStats:
        """Arithmetic means across active, scored municipalities.

        ``dimension_sets`` holds the latest per-dimension values by
        municipality; entries for non-participating municipalities are
        ignored. With no participants every average is left empty.
        """
        scores = ScoreCalculator.rankable_scores(municipalities)
        if not scores:
            return NationalStats()

        dimension_averages: dict[MIIDimension, float] = {}
        participating = [
            values
            for mid, values in (dimension_sets or {}).items()
            if mid in scores
        ]
        if participating:
            for dim in MIIDimension:
                dimension_averages[dim] = (
                    sum(values[dim] for values in participating) / len(participating)
                )

        return NationalStats(
            municipality_count=len(scores),
            average_score=sum(scores.values()) / len(scores),
            dimension_averages=dimension_averages,
        )
