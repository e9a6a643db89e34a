"""Response schemas for reaction sync endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SyncReactionsResponse(BaseModel):
    skipped: bool
    updated: int = 0
    total: int = 0
    next_sync_available: datetime | None = None
    remaining_seconds: int | None = None


class RecordReactionsResponse(BaseModel):
    pow_record_id: int
    total_reactions: int
    reaction_details: dict[str, int]
