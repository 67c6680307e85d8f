"""MII enums, dataclasses, and Pydantic models.

Defines the six scoring dimensions, the snapshot history record, national
statistics, trend and insight outputs, and the drill-down view returned to
presentation layers.

Deterministic -- no LLM calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import Field, field_validator

from mii.models.common import (
    MIIBase,
    Score,
    UTCTimestamp,
    UUIDv7,
    new_uuid7,
    utc_now,
)


# ---------------------------------------------------------------------------
# Enums (all StrEnum)
# ---------------------------------------------------------------------------


class MIIDimension(StrEnum):
    """The six fixed MII scoring axes."""

    LEADERSHIP = "LEADERSHIP"
    STRATEGY = "STRATEGY"
    CULTURE = "CULTURE"
    PARTNERSHIPS = "PARTNERSHIPS"
    CAPABILITIES = "CAPABILITIES"
    IMPACT = "IMPACT"


class TrendDirection(StrEnum):
    UP = "up"
    FLAT = "flat"
    DOWN = "down"


class InsightClassification(StrEnum):
    STRENGTH = "strength"
    IMPROVEMENT_AREA = "improvement_area"


class RecalculationState(StrEnum):
    """Per-request recalculation lifecycle."""

    REQUESTED = "REQUESTED"
    FETCHING = "FETCHING"
    AGGREGATING = "AGGREGATING"
    SCORING = "SCORING"
    PERSISTING = "PERSISTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Frozen dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrendPoint:
    """One (year, score) point of a municipality's history."""

    year: int
    score: float


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class DimensionScore(MIIBase):
    """A single dimension value with the provenance of how it was derived."""

    dimension: MIIDimension
    value: Score
    rule: str = ""
    inputs_used: dict[str, float] = Field(default_factory=dict)


class ScoreSnapshot(MIIBase, frozen=True):
    """Immutable record of a municipality's full score state.

    One snapshot per recalculation, keyed by (municipality_id, as_of).
    """

    snapshot_id: UUIDv7 = Field(default_factory=new_uuid7)
    municipality_id: UUID
    as_of: UTCTimestamp = Field(default_factory=utc_now)
    assessment_year: int
    overall_score: Score
    dimension_values: dict[MIIDimension, Score]
    rank: int | None = Field(default=None, ge=1)
    previous_rank: int | None = Field(default=None, ge=1)
    formula_version: str

    @field_validator("dimension_values")
    @classmethod
    def _six_dimensions(
        cls, value: dict[MIIDimension, float],
    ) -> dict[MIIDimension, float]:
        if set(value) != set(MIIDimension):
            raise ValueError("dimension_values must hold exactly the six MII dimensions.")
        return value


class NationalStats(MIIBase):
    """National averages across active, scored municipalities.

    ``average_score`` is ``None`` when no municipality participates.
    """

    municipality_count: int = 0
    average_score: float | None = None
    dimension_averages: dict[MIIDimension, float] = Field(default_factory=dict)


class Insight(MIIBase):
    dimension: MIIDimension
    classification: InsightClassification
    value: float
    national_average: float
    delta: float


class InsightReport(MIIBase):
    """Strengths (best first) and improvement areas (worst first)."""

    strengths: list[Insight] = Field(default_factory=list)
    improvement_areas: list[Insight] = Field(default_factory=list)


class RecalculationResult(MIIBase):
    municipality_id: UUID
    overall_score: float
    snapshot_id: UUID
    rank: int | None = None
    as_of: datetime
    state: RecalculationState = RecalculationState.COMPLETED


class RankingEntry(MIIBase):
    rank: int
    municipality_id: UUID
    name_en: str
    name_ar: str = ""
    region: str
    overall_score: float


class CalculationStats(MIIBase):
    """Admin overview of the snapshot history."""

    total_snapshots: int = 0
    municipalities_scored: int = 0
    average_score: float | None = None
    pending_recalculation: int = 0
    last_calculated_at: datetime | None = None


class MIIView(MIIBase):
    """Drill-down view for one municipality.

    ``overall_score`` and ``rank`` come from the latest committed snapshot.
    ``dimensions`` are aggregated live, so they may be newer than the score.
    """

    municipality_id: UUID
    name_en: str
    name_ar: str = ""
    region: str
    city_type: str | None = None
    population: int | None = None
    overall_score: float | None = None
    rank: int | None = None
    national_average: float | None = None
    dimensions: list[DimensionScore]
    trend: list[TrendPoint] = Field(default_factory=list)
    yoy_growth: float | None = None
    trend_direction: TrendDirection = TrendDirection.FLAT
    insufficient_history: bool = True
    strengths: list[Insight] = Field(default_factory=list)
    improvement_areas: list[Insight] = Field(default_factory=list)
    challenge_count: int = 0
    active_pilots: int = 0
    completed_pilots: int = 0


class BulkRecalculationResult(MIIBase):
    """Outcome of recalculating many municipalities in one request."""

    completed: list[RecalculationResult] = Field(default_factory=list)
    failed: dict[UUID, str] = Field(default_factory=dict)
