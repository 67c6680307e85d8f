"""Typed entity records consumed by the MII engine.

Records mirror the rows held by the entity store. Every optional field has
an explicit default here so callers never need fallback chains.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import Field

from mii.models.common import MIIBase, Score


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ChallengeStatus(StrEnum):
    """Lifecycle status of a municipal challenge."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    OPEN = "open"
    APPROVED = "approved"
    IN_TREATMENT = "in_treatment"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


class PilotStage(StrEnum):
    """Lifecycle stage of a pilot."""

    PLANNING = "planning"
    APPROVAL_PENDING = "approval_pending"
    ACTIVE = "active"
    MONITORING = "monitoring"
    COMPLETED = "completed"
    SCALED = "scaled"
    TERMINATED = "terminated"


class PartnershipStatus(StrEnum):
    """Lifecycle status of a partnership."""

    PROPOSED = "proposed"
    ACTIVE = "active"
    COMPLETED = "completed"
    TERMINATED = "terminated"


# Stage groupings used by both the aggregator and the view counters.
RUNNING_PILOT_STAGES: frozenset[PilotStage] = frozenset(
    {PilotStage.ACTIVE, PilotStage.MONITORING}
)
FINISHED_PILOT_STAGES: frozenset[PilotStage] = frozenset(
    {PilotStage.COMPLETED, PilotStage.SCALED}
)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class Municipality(MIIBase):
    """A municipality and its current (latest committed) MII fields.

    ``mii_score`` and ``mii_rank`` are ``None`` until the first
    recalculation commits a snapshot.
    """

    municipality_id: UUID
    name_en: str
    name_ar: str = ""
    region: str
    city_type: str | None = None
    population: int | None = Field(default=None, ge=0)
    mii_score: Score | None = None
    mii_rank: int | None = Field(default=None, ge=1)
    active_pilots: int = Field(default=0, ge=0)
    completed_pilots: int = Field(default=0, ge=0)
    is_active: bool = True
    is_deleted: bool = False
    mii_recalc_pending: bool = False
    mii_last_calculated_at: datetime | None = None

    @property
    def is_rankable(self) -> bool:
        """Active, not soft-deleted, and scored at least once."""
        return self.is_active and not self.is_deleted and self.mii_score is not None


class Challenge(MIIBase):
    challenge_id: UUID
    municipality_id: UUID
    status: ChallengeStatus
    is_deleted: bool = False


class Pilot(MIIBase):
    pilot_id: UUID
    municipality_id: UUID
    stage: PilotStage
    is_deleted: bool = False


class Partnership(MIIBase):
    partnership_id: UUID
    municipality_id: UUID
    status: PartnershipStatus
    is_deleted: bool = False
