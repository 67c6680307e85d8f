"""MII scoring configuration.

Holds the versioned aggregation formula's reference ceilings, the
dimension weights, and the named thresholds used by the trend analyzer
and the insight deriver. Changing any value here changes recomputed
scores, so bump ``formula_version`` with it.

Deterministic -- no LLM calls.
"""

from __future__ import annotations

import math

from pydantic import Field, model_validator

from mii.models.common import MIIBase
from mii.scoring.models import MIIDimension

FORMULA_VERSION = "mii-formula-v2"

# Minimum |latest - previous| that counts as movement in a trend.
TREND_EPSILON = 0.5

# Distance from the national average needed to call a dimension a
# strength (above) or an improvement area (below).
INSIGHT_MARGIN = 5.0


class MIIScoringConfig(MIIBase, frozen=True):
    """Configuration for the MII scoring engine."""

    formula_version: str = FORMULA_VERSION

    dimension_weights: dict[MIIDimension, float] = Field(
        default_factory=lambda: {
            MIIDimension.LEADERSHIP: 0.15,
            MIIDimension.STRATEGY: 0.15,
            MIIDimension.CULTURE: 0.15,
            MIIDimension.PARTNERSHIPS: 0.15,
            MIIDimension.CAPABILITIES: 0.15,
            MIIDimension.IMPACT: 0.25,
        },
    )

    # Reference ceilings: the count at which a dimension saturates at 100.
    pipeline_ceiling: int = Field(default=20, gt=0)
    active_pilot_ceiling: int = Field(default=5, gt=0)
    partnership_ceiling: int = Field(default=10, gt=0)
    pilots_per_100k_ceiling: float = Field(default=5.0, gt=0.0)

    # Residents assumed for a municipality with no recorded population.
    default_population: int = Field(default=100_000, gt=0)
    # Share of CULTURE taken by the per-capita term.
    culture_experimentation_weight: float = Field(default=0.5, ge=0.0, le=1.0)

    trend_epsilon: float = Field(default=TREND_EPSILON, ge=0.0)
    insight_margin: float = Field(default=INSIGHT_MARGIN, ge=0.0)

    @model_validator(mode="after")
    def _validate_weights(self) -> "MIIScoringConfig":
        """Weights must cover all six dimensions and sum to 1.0."""
        if set(self.dimension_weights) != set(MIIDimension):
            missing = sorted(set(MIIDimension) - set(self.dimension_weights))
            raise ValueError(
                f"dimension_weights must cover all six dimensions; missing {missing}."
            )
        if any(w < 0.0 for w in self.dimension_weights.values()):
            raise ValueError("dimension_weights must be non-negative.")
        total = sum(self.dimension_weights.values())
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ValueError(f"dimension_weights must sum to 1.0, got {total}.")
        return self
