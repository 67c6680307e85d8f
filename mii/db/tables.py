"""SQLAlchemy ORM table models for the MII engine.

Uses FlexJSON (JSONB on Postgres, JSON on SQLite) for dimension values.

Categories:
- IMMUTABLE: ScoreSnapshot (append-only, unique per municipality + as_of)
- OPERATIONAL: Municipality (current MII fields updated on recalculation),
               Challenge, Pilot, Partnership (owned by the entity store)
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from mii.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")


# ---------------------------------------------------------------------------
# Entities: OPERATIONAL
# ---------------------------------------------------------------------------


class MunicipalityRow(Base):
    __tablename__ = "municipalities"

    municipality_id: Mapped[UUID] = mapped_column(primary_key=True)
    name_en: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    region: Mapped[str] = mapped_column(String(255), nullable=False)
    city_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    population: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mii_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    mii_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active_pilots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_pilots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mii_recalc_pending: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    mii_last_calculated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )


class ChallengeRow(Base):
    __tablename__ = "challenges"

    challenge_id: Mapped[UUID] = mapped_column(primary_key=True)
    municipality_id: Mapped[UUID] = mapped_column(
        ForeignKey("municipalities.municipality_id"), nullable=False, index=True,
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PilotRow(Base):
    __tablename__ = "pilots"

    pilot_id: Mapped[UUID] = mapped_column(primary_key=True)
    municipality_id: Mapped[UUID] = mapped_column(
        ForeignKey("municipalities.municipality_id"), nullable=False, index=True,
    )
    stage: Mapped[str] = mapped_column(String(50), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PartnershipRow(Base):
    __tablename__ = "partnerships"

    partnership_id: Mapped[UUID] = mapped_column(primary_key=True)
    municipality_id: Mapped[UUID] = mapped_column(
        ForeignKey("municipalities.municipality_id"), nullable=False, index=True,
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


# ---------------------------------------------------------------------------
# Score history: IMMUTABLE
# ---------------------------------------------------------------------------


class ScoreSnapshotRow(Base):
    """Append-only MII snapshot. One row per (municipality_id, as_of)."""

    __tablename__ = "mii_score_snapshots"
    __table_args__ = (
        UniqueConstraint("municipality_id", "as_of", name="uq_mii_snapshot_as_of"),
    )

    snapshot_id: Mapped[UUID] = mapped_column(primary_key=True)
    municipality_id: Mapped[UUID] = mapped_column(
        ForeignKey("municipalities.municipality_id"), nullable=False, index=True,
    )
    as_of: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    assessment_year: Mapped[int] = mapped_column(Integer, nullable=False)
    overall_score: Mapped[float] = mapped_column(Float, nullable=False)
    dimension_values: Mapped[dict] = mapped_column(FlexJSON, nullable=False)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    formula_version: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
