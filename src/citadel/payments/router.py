"""Payments router: Lightning invoice creation and status polling."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException

from citadel.auth.dependencies import get_current_user
from citadel.config import get_settings
from citadel.db.models import User
from citadel.dependencies import get_blink_client
from citadel.payments.blink import PAID, BlinkClient, PaymentProviderError
from citadel.payments.schemas import InvoiceRequest, InvoiceResponse, PaymentStatusResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/payments", tags=["Payments"])


@router.post("/invoice", response_model=InvoiceResponse)
async def create_invoice(
    body: InvoiceRequest,
    user: User = Depends(get_current_user),
    blink: BlinkClient = Depends(get_blink_client),
) -> InvoiceResponse:
    settings = get_settings()
    expiry = settings.invoice_expiry_seconds
    try:
        invoice = await blink.create_invoice(body.amount, body.memo or settings.default_invoice_memo, expiry)
    except PaymentProviderError as e:
        logger.error("invoice_create_failed", user_id=user.id, amount=body.amount, error=str(e))
        raise HTTPException(status_code=502, detail="Failed to create invoice") from e

    logger.info("invoice_created", user_id=user.id, amount=body.amount, payment_hash=invoice.payment_hash)
    return InvoiceResponse(
        payment_request=invoice.payment_request,
        payment_hash=invoice.payment_hash,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expiry),
    )


@router.get("/invoice/{payment_hash}", response_model=PaymentStatusResponse)
async def invoice_status(
    payment_hash: str,
    _user: User = Depends(get_current_user),
    blink: BlinkClient = Depends(get_blink_client),
) -> PaymentStatusResponse:
    try:
        status = await blink.get_payment_status(payment_hash)
    except PaymentProviderError as e:
        logger.error("invoice_status_failed", payment_hash=payment_hash, error=str(e))
        raise HTTPException(status_code=502, detail="Failed to check payment status") from e
    return PaymentStatusResponse(paid=status == PAID, status=status)
