"""Leaderboard router: /api/v1/leaderboard/* endpoints."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from citadel.database import get_session
from citadel.leaderboard.schemas import (
    ArchivedRankingResponse,
    ArchivedWeekResponse,
    LeaderboardResponse,
    PopularPowListResponse,
    PopularPowResponse,
    RankingEntryResponse,
)
from citadel.leaderboard.service import (
    donation_leaderboard,
    get_archived_week,
    popular_pows,
    time_leaderboard,
)
from citadel.leaderboard.week_utils import get_week_boundaries

router = APIRouter(prefix="/api/v1/leaderboard", tags=["Leaderboard"])


@router.get("/{board}", response_model=LeaderboardResponse)
async def get_leaderboard(
    board: Literal["donation", "time"],
    field: str | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
) -> LeaderboardResponse:
    """This week's donation or POW-time ranking, optionally for one field."""
    query = donation_leaderboard if board == "donation" else time_leaderboard
    try:
        entries = await query(db, field=field, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    week_start, week_end = get_week_boundaries()
    return LeaderboardResponse(
        board=board,
        field=field,
        week_start=week_start,
        week_end=week_end,
        entries=[RankingEntryResponse(**asdict(e)) for e in entries],
    )


@router.get("/popular/pows", response_model=PopularPowListResponse)
async def get_popular_pows(db: AsyncSession = Depends(get_session)) -> PopularPowListResponse:
    items = await popular_pows(db)
    week_start, _ = get_week_boundaries()
    return PopularPowListResponse(
        week_start=week_start,
        items=[PopularPowResponse(**asdict(i)) for i in items],
    )


@router.get("/archive/weekly", response_model=ArchivedWeekResponse)
async def get_archive(
    week_start: datetime | None = Query(None),
    db: AsyncSession = Depends(get_session),
) -> ArchivedWeekResponse:
    """Archived top-3 boards for a week (latest archived week by default)."""
    rows = await get_archived_week(db, week_start)
    if not rows:
        return ArchivedWeekResponse(rankings=[])
    return ArchivedWeekResponse(
        week_start=rows[0].week_start,
        week_end=rows[0].week_end,
        rankings=[ArchivedRankingResponse.model_validate(r) for r in rows],
    )
