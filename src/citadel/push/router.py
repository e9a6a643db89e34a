"""Push router: /api/v1/push/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from citadel.auth.dependencies import get_current_user, verify_cron_secret
from citadel.config import get_settings
from citadel.database import get_session
from citadel.db.models import User
from citadel.dependencies import get_push_sender
from citadel.push import service
from citadel.push.schemas import (
    ScheduleRequest,
    ScheduleResponse,
    SendRequest,
    SendResponse,
    SubscribeRequest,
    UnsubscribeRequest,
)
from citadel.push.sender import WebPushSender

router = APIRouter(prefix="/api/v1/push", tags=["Push"])


@router.get("/vapid-public-key")
async def vapid_public_key() -> dict[str, str]:
    """Application server key the browser needs to create a subscription."""
    key = get_settings().vapid_public_key
    if not key:
        raise HTTPException(status_code=404, detail="Web push is not configured")
    return {"public_key": key}


@router.post("/subscribe")
async def subscribe(
    body: SubscribeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, bool]:
    await service.subscribe(db, user.id, body.endpoint, body.keys.model_dump())
    await db.commit()
    return {"success": True}


@router.post("/unsubscribe")
async def unsubscribe(
    body: UnsubscribeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, bool | int]:
    removed = await service.unsubscribe(db, user.id, body.endpoint)
    await db.commit()
    return {"success": True, "removed": removed}


@router.post("/send", response_model=SendResponse, dependencies=[Depends(verify_cron_secret)])
async def send(
    body: SendRequest,
    db: AsyncSession = Depends(get_session),
    sender: WebPushSender = Depends(get_push_sender),
) -> SendResponse:
    """Deliver a payload to all of a user's subscriptions (server-to-server)."""
    try:
        result = await service.send_to_user(db, sender, body.user_id, body.payload.to_message())
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    await db.commit()
    return SendResponse(sent=result.sent, failed=result.failed, total=result.total)


@router.post("/schedule", response_model=ScheduleResponse)
async def schedule(
    body: ScheduleRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ScheduleResponse:
    item = await service.schedule_goal_push(db, user.id, body.goal_time_seconds, pow_ref=body.pow_id)
    await db.commit()
    return ScheduleResponse(id=item.id, type=item.type, scheduled_at=item.scheduled_at)


@router.delete("/schedule")
async def cancel_schedule(
    push_type: str | None = Query(default=None, alias="type"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, bool | int]:
    removed = await service.cancel_scheduled(db, user.id, push_type)
    await db.commit()
    return {"success": True, "removed": removed}
