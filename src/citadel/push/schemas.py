"""Request/response schemas for push endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class SubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)
    keys: SubscriptionKeys


class UnsubscribeRequest(BaseModel):
    endpoint: str | None = None


class PushPayload(BaseModel):
    title: str
    body: str
    tag: str | None = None
    url: str | None = None
    data: dict[str, Any] | None = None

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {"title": self.title, "body": self.body}
        if self.tag:
            message["tag"] = self.tag
        data = dict(self.data or {})
        if self.url:
            data.setdefault("url", self.url)
        if data:
            message["data"] = data
        return message


class SendRequest(BaseModel):
    user_id: int
    payload: PushPayload


class SendResponse(BaseModel):
    sent: int
    failed: int
    total: int


class ScheduleRequest(BaseModel):
    goal_time_seconds: int = Field(..., gt=0)
    pow_id: str | None = None


class ScheduleResponse(BaseModel):
    id: int
    type: str
    scheduled_at: datetime


class ProcessScheduledResponse(BaseModel):
    processed: int
    success: int
    failed: int
