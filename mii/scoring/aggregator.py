"""Dimension aggregator -- maps entity counts onto the six MII dimensions.

Formula ``mii-formula-v2`` (each value x100, clamped to [0, 100]):

    LEADERSHIP    (challenges + pilots) / pipeline_ceiling
    STRATEGY      pilots / challenges                  (0 when no challenges)
    CULTURE       blend of running pilots / active_pilot_ceiling and
                  pilots per 100k residents / pilots_per_100k_ceiling
    PARTNERSHIPS  active partnerships / partnership_ceiling
    CAPABILITIES  resolved challenges / challenges     (0 when no challenges)
    IMPACT        completed or scaled pilots / pilots  (0 when no pilots)

The CULTURE blend weights the per-capita term by
``culture_experimentation_weight``. A municipality with no recorded
population is measured against ``default_population`` residents.

Soft-deleted records never count. Empty collections yield 0, never an error.

Deterministic -- no LLM calls.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass
from uuid import UUID

from mii.models.entities import (
    FINISHED_PILOT_STAGES,
    RUNNING_PILOT_STAGES,
    Challenge,
    ChallengeStatus,
    Partnership,
    PartnershipStatus,
    Pilot,
)
from mii.scoring.config import MIIScoringConfig
from mii.scoring.errors import NotFoundError
from mii.scoring.models import DimensionScore, MIIDimension
from mii.scoring.stores import EntityStore


def clamp_score(value: float) -> float:
    """Clamp to the [0, 100] score range."""
    return max(0.0, min(100.0, value))


def _ratio(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return numerator / denominator


@dataclass(frozen=True)
class EntityCounts:
    """Counts of live (non-deleted) related entities for one municipality."""

    challenges: int = 0
    resolved_challenges: int = 0
    pilots: int = 0
    running_pilots: int = 0
    finished_pilots: int = 0
    active_partnerships: int = 0
    population: int | None = None

    @classmethod
    def from_entities(
        cls,
        challenges: Sequence[Challenge],
        pilots: Sequence[Pilot],
        partnerships: Sequence[Partnership],
        *,
        population: int | None = None,
    ) -> "EntityCounts":
        live_challenges = [c for c in challenges if not c.is_deleted]
        live_pilots = [p for p in pilots if not p.is_deleted]
        live_partnerships = [p for p in partnerships if not p.is_deleted]
        return cls(
            challenges=len(live_challenges),
            resolved_challenges=sum(
                1 for c in live_challenges if c.status == ChallengeStatus.RESOLVED
            ),
            pilots=len(live_pilots),
            running_pilots=sum(
                1 for p in live_pilots if p.stage in RUNNING_PILOT_STAGES
            ),
            finished_pilots=sum(
                1 for p in live_pilots if p.stage in FINISHED_PILOT_STAGES
            ),
            active_partnerships=sum(
                1 for p in live_partnerships if p.status == PartnershipStatus.ACTIVE
            ),
            population=population,
        )


class DimensionAggregator:
    """Produces exactly six DimensionScore values for a municipality.

    Each scoring method returns a DimensionScore carrying the rule name
    and the counts it consumed, so a recomputation can be audited.
    """

    def __init__(self, config: MIIScoringConfig | None = None) -> None:
        self._config = config or MIIScoringConfig()

    @property
    def formula_version(self) -> str:
        return self._config.formula_version

    def aggregate(
        self,
        municipality_id: UUID,
        challenges: Sequence[Challenge],
        pilots: Sequence[Pilot],
        partnerships: Sequence[Partnership],
        *,
        population: int | None = None,
        known_municipality_ids: Collection[UUID] | None = None,
    ) -> list[DimensionScore]:
        """Aggregate related entities into the six dimensions.

        ``population`` feeds the per-capita CULTURE term; ``None`` falls
        back to the configured default population.

        When ``known_municipality_ids`` is given, an id outside it raises
        ``NotFoundError``; a known municipality with no related data scores
        zero rather than failing.
        """
        if known_municipality_ids is not None and municipality_id not in known_municipality_ids:
            raise NotFoundError(
                f"Municipality {municipality_id} not found.",
                municipality_id=municipality_id,
            )

        counts = EntityCounts.from_entities(
            challenges, pilots, partnerships, population=population,
        )
        return self.score_counts(counts)

    async def aggregate_for(
        self, store: EntityStore, municipality_id: UUID,
    ) -> list[DimensionScore]:
        """Fetch live entities for one municipality and aggregate them."""
        municipality = await store.get_municipality(municipality_id)
        if municipality is None or municipality.is_deleted:
            raise NotFoundError(
                f"Municipality {municipality_id} not found.",
                municipality_id=municipality_id,
            )
        challenges = await store.list_challenges(
            municipality_id=municipality_id, is_deleted=False,
        )
        pilots = await store.list_pilots(
            municipality_id=municipality_id, is_deleted=False,
        )
        partnerships = await store.list_partnerships(
            municipality_id=municipality_id, is_deleted=False,
        )
        return self.aggregate(
            municipality_id, challenges, pilots, partnerships,
            population=municipality.population,
        )

    def score_counts(self, counts: EntityCounts) -> list[DimensionScore]:
        """Score pre-computed counts, in MIIDimension order."""
        return [
            self.score_leadership(counts),
            self.score_strategy(counts),
            self.score_culture(counts),
            self.score_partnerships(counts),
            self.score_capabilities(counts),
            self.score_impact(counts),
        ]

    # ---------------------------------------------------------------
    # Dimension 1: Leadership
    # ---------------------------------------------------------------

    def score_leadership(self, counts: EntityCounts) -> DimensionScore:
        """Size of the innovation pipeline against the reference ceiling."""
        pipeline = counts.challenges + counts.pilots
        return DimensionScore(
            dimension=MIIDimension.LEADERSHIP,
            value=clamp_score(100.0 * pipeline / self._config.pipeline_ceiling),
            rule="leadership_pipeline_over_ceiling",
            inputs_used={
                "challenges": counts.challenges,
                "pilots": counts.pilots,
                "pipeline_ceiling": self._config.pipeline_ceiling,
            },
        )

    # ---------------------------------------------------------------
    # Dimension 2: Strategy
    # ---------------------------------------------------------------

    def score_strategy(self, counts: EntityCounts) -> DimensionScore:
        """Challenge-to-pilot conversion."""
        return DimensionScore(
            dimension=MIIDimension.STRATEGY,
            value=clamp_score(100.0 * _ratio(counts.pilots, counts.challenges)),
            rule="strategy_challenge_to_pilot_conversion",
            inputs_used={"pilots": counts.pilots, "challenges": counts.challenges},
        )

    # ---------------------------------------------------------------
    # Dimension 3: Culture
    # ---------------------------------------------------------------

    def score_culture(self, counts: EntityCounts) -> DimensionScore:
        """Running pilots and pilots per 100k residents, each against a ceiling."""
        cfg = self._config
        population = counts.population or cfg.default_population
        pilots_per_100k = 100_000 * counts.pilots / population
        running = clamp_score(100.0 * counts.running_pilots / cfg.active_pilot_ceiling)
        experimentation = clamp_score(100.0 * pilots_per_100k / cfg.pilots_per_100k_ceiling)
        weight = cfg.culture_experimentation_weight
        return DimensionScore(
            dimension=MIIDimension.CULTURE,
            value=clamp_score((1.0 - weight) * running + weight * experimentation),
            rule="culture_running_pilots_and_pilots_per_capita",
            inputs_used={
                "running_pilots": counts.running_pilots,
                "active_pilot_ceiling": cfg.active_pilot_ceiling,
                "pilots": counts.pilots,
                "population": population,
                "pilots_per_100k": pilots_per_100k,
                "pilots_per_100k_ceiling": cfg.pilots_per_100k_ceiling,
            },
        )

    # ---------------------------------------------------------------
    # Dimension 4: Partnerships
    # ---------------------------------------------------------------

    def score_partnerships(self, counts: EntityCounts) -> DimensionScore:
        """Active partnerships against the reference ceiling."""
        return DimensionScore(
            dimension=MIIDimension.PARTNERSHIPS,
            value=clamp_score(
                100.0 * counts.active_partnerships / self._config.partnership_ceiling
            ),
            rule="partnerships_active_over_ceiling",
            inputs_used={
                "active_partnerships": counts.active_partnerships,
                "partnership_ceiling": self._config.partnership_ceiling,
            },
        )

    # ---------------------------------------------------------------
    # Dimension 5: Capabilities
    # ---------------------------------------------------------------

    def score_capabilities(self, counts: EntityCounts) -> DimensionScore:
        """Share of challenges resolved."""
        return DimensionScore(
            dimension=MIIDimension.CAPABILITIES,
            value=clamp_score(
                100.0 * _ratio(counts.resolved_challenges, counts.challenges)
            ),
            rule="capabilities_resolution_rate",
            inputs_used={
                "resolved_challenges": counts.resolved_challenges,
                "challenges": counts.challenges,
            },
        )

    # ---------------------------------------------------------------
    # Dimension 6: Impact
    # ---------------------------------------------------------------

    def score_impact(self, counts: EntityCounts) -> DimensionScore:
        """Share of pilots completed or scaled."""
        return DimensionScore(
            dimension=MIIDimension.IMPACT,
            value=clamp_score(100.0 * _ratio(counts.finished_pilots, counts.pilots)),
            rule="impact_finished_pilot_ratio",
            inputs_used={
                "finished_pilots": counts.finished_pilots,
                "pilots": counts.pilots,
            },
        )
