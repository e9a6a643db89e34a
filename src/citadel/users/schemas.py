"""Response schemas for user endpoints."""

from __future__ import annotations

from pydantic import BaseModel

from citadel.auth.schemas import UserResponse


class FieldStatsResponse(BaseModel):
    field: str
    pow_count: int
    total_time: int
    donated_sats: int


class UserStatsResponse(BaseModel):
    pow_count: int
    total_pow_time: int
    total_donated_sats: int
    accumulated_sats: int
    average_achievement_rate: float
    group_pow_count: int
    fields: list[FieldStatsResponse]


class SyncRoleResponse(BaseModel):
    success: bool = True
    role_status: int
    user: UserResponse
