"""FastAPI MII endpoints.

POST /v1/municipalities/{municipality_id}/mii/recalculate  — recalculate one municipality
POST /v1/municipalities/{municipality_id}/mii/pending      — flag for the next sweep
GET  /v1/municipalities/{municipality_id}/mii              — drill-down view
GET  /v1/mii/rankings                                      — national ranking (?region=)
GET  /v1/mii/stats                                         — calculation overview
POST /v1/mii/recalculate                                   — recalculate all (or pending)

Deterministic engine code only (no LLM).
"""

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from mii.api.dependencies import get_orchestrator, get_view_service
from mii.scoring.errors import (
    ComputationError,
    InvalidSeriesError,
    MIIError,
    NotFoundError,
    TransientError,
)
from mii.scoring.models import (
    BulkRecalculationResult,
    CalculationStats,
    MIIView,
    RankingEntry,
)
from mii.scoring.orchestrator import RecalculationOrchestrator
from mii.scoring.service import MIIViewService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["mii"])

_STATUS_BY_ERROR: dict[type[MIIError], int] = {
    NotFoundError: 404,
    InvalidSeriesError: 422,
    TransientError: 503,
    ComputationError: 500,
}

_DETAIL_BY_ERROR: dict[type[MIIError], str] = {
    TransientError: "Entity store unavailable. Try again later.",
    ComputationError: "MII computation failed.",
}


def _http_error(exc: MIIError) -> HTTPException:
    status = _STATUS_BY_ERROR.get(type(exc), 500)
    if status >= 500:
        logger.error("MII request failed: %s (%s)", exc, type(exc).__name__)
    return HTTPException(
        status_code=status,
        detail=_DETAIL_BY_ERROR.get(type(exc), str(exc)),
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class RecalculateResponse(BaseModel):
    municipality_id: str
    overall_score: float
    snapshot_id: str
    rank: int | None = None
    as_of: datetime


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/municipalities/{municipality_id}/mii/recalculate",
    response_model=RecalculateResponse,
)
async def recalculate(
    municipality_id: UUID,
    orchestrator: RecalculationOrchestrator = Depends(get_orchestrator),
) -> RecalculateResponse:
    """Recompute the MII for one municipality and persist a snapshot."""
    try:
        result = await orchestrator.recalculate(municipality_id)
    except MIIError as exc:
        raise _http_error(exc) from exc
    return RecalculateResponse(
        municipality_id=str(result.municipality_id),
        overall_score=result.overall_score,
        snapshot_id=str(result.snapshot_id),
        rank=result.rank,
        as_of=result.as_of,
    )


@router.post("/municipalities/{municipality_id}/mii/pending", status_code=202)
async def mark_pending(
    municipality_id: UUID,
    orchestrator: RecalculationOrchestrator = Depends(get_orchestrator),
) -> dict[str, str]:
    try:
        await orchestrator.mark_pending(municipality_id)
    except MIIError as exc:
        raise _http_error(exc) from exc
    return {"municipality_id": str(municipality_id), "status": "pending"}


@router.get("/municipalities/{municipality_id}/mii", response_model=MIIView)
async def get_mii_view(
    municipality_id: UUID,
    service: MIIViewService = Depends(get_view_service),
) -> MIIView:
    """Drill-down view: score, rank, dimensions, trend, insights."""
    try:
        return await service.get_mii_view(municipality_id)
    except MIIError as exc:
        raise _http_error(exc) from exc


@router.get("/mii/rankings", response_model=list[RankingEntry])
async def get_rankings(
    region: str | None = Query(
        default=None,
        description="Only list municipalities in this region; ranks stay national.",
    ),
    service: MIIViewService = Depends(get_view_service),
) -> list[RankingEntry]:
    try:
        return await service.rankings(region=region)
    except MIIError as exc:
        raise _http_error(exc) from exc


@router.get("/mii/stats", response_model=CalculationStats)
async def get_stats(
    service: MIIViewService = Depends(get_view_service),
) -> CalculationStats:
    try:
        return await service.calculation_stats()
    except MIIError as exc:
        raise _http_error(exc) from exc


@router.post("/mii/recalculate", response_model=BulkRecalculationResult)
async def recalculate_all(
    pending_only: bool = Query(
        default=False,
        description="Only recalculate municipalities flagged as pending.",
    ),
    orchestrator: RecalculationOrchestrator = Depends(get_orchestrator),
) -> BulkRecalculationResult:
    """Recalculate every active municipality (or only pending ones)."""
    try:
        if pending_only:
            return await orchestrator.recalculate_pending()
        return await orchestrator.recalculate_all()
    except MIIError as exc:
        raise _http_error(exc) from exc
