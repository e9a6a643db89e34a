"""Request/response schemas for POW endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from citadel.config import get_settings
from citadel.pow.fields import FIELD_KEYS

PowMode = Literal["immediate", "accumulated"]


def _check_field(value: str) -> str:
    if value not in FIELD_KEYS:
        msg = f"field must be one of {', '.join(FIELD_KEYS)}"
        raise ValueError(msg)
    return value


# ---------------------------------------------------------------------------
# Timer
# ---------------------------------------------------------------------------


class TimerStartRequest(BaseModel):
    field: str
    goal_content: str = Field(..., min_length=1, max_length=200)
    goal_time: int = Field(..., gt=0, le=24 * 3600)
    target_sats: int = Field(..., ge=0)
    mode: PowMode = "immediate"

    @field_validator("field")
    @classmethod
    def known_field(cls, v: str) -> str:
        return _check_field(v)


class TimerResponse(BaseModel):
    status: str
    field: str
    goal_content: str
    goal_time: int
    target_sats: int
    mode: str
    started_at: datetime | None = None
    last_paused_at: datetime | None = None
    total_paused_seconds: int
    elapsed_seconds: int
    achievement_rate: float
    projected_sats: int


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


class PowCompleteData(BaseModel):
    """The ``pow_data`` JSON part of the completion form.

    ``actual_time`` may be omitted when a stopped server-side timer
    session exists; it is then taken from that session.
    """

    field: str
    goal_content: str = Field(..., min_length=1, max_length=200)
    goal_time: int = Field(..., gt=0)
    actual_time: int | None = Field(None, ge=0)
    target_sats: int = Field(..., ge=0)
    mode: PowMode
    memo: str | None = None
    group_pow_id: int | None = None
    started_at: datetime | None = None
    total_paused_time: int = Field(0, ge=0)
    paid: bool = False

    @field_validator("field")
    @classmethod
    def known_field(cls, v: str) -> str:
        return _check_field(v)

    @field_validator("memo")
    @classmethod
    def normalize_memo(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        limit = get_settings().max_memo_length
        if len(v) > limit:
            msg = f"memo must be at most {limit} characters"
            raise ValueError(msg)
        return v or None


class PowRecordResponse(BaseModel):
    id: int
    user_id: int
    field: str
    goal_content: str
    goal_time: int
    actual_time: int
    achievement_rate: float
    target_sats: int
    actual_sats: int
    mode: str
    status: str
    group_pow_id: int | None = None
    memo: str | None = None
    image_url: str | None = None
    discord_message_id: str | None = None
    started_at: datetime | None = None
    total_paused_time: int = 0
    completed_at: datetime | None = None
    donated_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class PowRecordListResponse(BaseModel):
    records: list[PowRecordResponse]
    total: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Donation
# ---------------------------------------------------------------------------


class DonateRequest(BaseModel):
    mode: PowMode
    pow_record_id: int | None = None
    amount: int | None = None

    @model_validator(mode="after")
    def check_mode_arguments(self) -> DonateRequest:
        if self.mode == "immediate" and self.pow_record_id is None:
            msg = "pow_record_id is required for immediate donations"
            raise ValueError(msg)
        if self.mode == "accumulated" and self.amount is None:
            msg = "amount is required for accumulated donations"
            raise ValueError(msg)
        return self


class DonateResponse(BaseModel):
    success: bool = True
    mode: str
    donated_sats: int
    records_settled: int
    accumulated_sats: int
    total_donated_sats: int


class AccumulatedResponse(BaseModel):
    accumulated_sats: int
    total_donated_sats: int
    pending_records: int
