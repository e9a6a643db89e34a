"""Request/response schemas for group POW endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class JoinRequest(BaseModel):
    pledged_sats: int = Field(..., gt=0)


class CreatorSummary(BaseModel):
    id: int
    discord_username: str
    discord_avatar_url: str | None = None

    model_config = {"from_attributes": True}


class GroupPowResponse(BaseModel):
    id: int
    creator_id: int
    title: str
    field: str
    description: str | None = None
    location: str | None = None
    thumbnail_url: str | None = None
    planned_date: datetime
    planned_duration: int
    actual_duration: int | None = None
    achievement_rate: float | None = None
    target_sats: int
    actual_sats_collected: int
    status: str
    created_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    cancelled_at: datetime | None = None
    creator: CreatorSummary | None = None
    participant_count: int = 0

    model_config = {"from_attributes": True}


class ParticipantResponse(BaseModel):
    id: int
    user_id: int
    discord_username: str
    discord_avatar_url: str | None = None
    pledged_sats: int
    actual_sats: int | None = None
    attendance_checked: bool
    attendance_checked_at: datetime | None = None
    invoice_paid: bool
    invoice_paid_at: datetime | None = None


class GroupPowDetailResponse(GroupPowResponse):
    participants: list[ParticipantResponse] = []


class GroupPowListResponse(BaseModel):
    today: list[GroupPowResponse]
    upcoming: list[GroupPowResponse]
    finished: list[GroupPowResponse]


class JoinResponse(BaseModel):
    success: bool = True
    participant_id: int
    pledged_sats: int
    actual_sats_collected: int


class StartResponse(BaseModel):
    success: bool = True
    started_at: datetime


class EndResponse(BaseModel):
    success: bool = True
    ended_at: datetime
    actual_duration: int
    achievement_rate: float
    total_actual_sats: int


class CancelResponse(BaseModel):
    success: bool = True
    cancelled_at: datetime


class AttendanceResponse(BaseModel):
    success: bool = True
    checked_at: datetime


class AttendanceStatusResponse(BaseModel):
    is_participant: bool
    attendance_checked: bool = False
    attendance_checked_at: datetime | None = None
    pledged_sats: int | None = None
