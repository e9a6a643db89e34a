"""Request/response schemas for Lightning invoice endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class InvoiceRequest(BaseModel):
    amount: int = Field(..., gt=0)
    memo: str | None = Field(None, max_length=200)


class InvoiceResponse(BaseModel):
    payment_request: str
    payment_hash: str
    expires_at: datetime


class PaymentStatusResponse(BaseModel):
    paid: bool
    status: str
