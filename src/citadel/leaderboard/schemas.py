"""Response schemas for leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class RankingEntryResponse(BaseModel):
    rank: int
    user_id: int
    username: str
    avatar_url: str | None = None
    role_status: int
    value: int


class LeaderboardResponse(BaseModel):
    board: str
    field: str | None = None
    week_start: datetime
    week_end: datetime
    entries: list[RankingEntryResponse]


class PopularPowResponse(BaseModel):
    rank: int
    pow_record_id: int
    user_id: int
    username: str
    avatar_url: str | None = None
    field: str
    goal_content: str
    total_reactions: int
    reaction_details: dict[str, int]
    completed_at: datetime | None = None
    is_last_week: bool


class PopularPowListResponse(BaseModel):
    week_start: datetime
    items: list[PopularPowResponse]


class ArchivedRankingResponse(BaseModel):
    ranking_type: str
    rankings: list[dict[str, Any]]

    model_config = {"from_attributes": True}


class ArchivedWeekResponse(BaseModel):
    week_start: datetime | None = None
    week_end: datetime | None = None
    rankings: list[ArchivedRankingResponse]


class ArchiveResponse(BaseModel):
    skipped: bool
    week_start: datetime
    week_end: datetime
    saved: dict[str, int]
