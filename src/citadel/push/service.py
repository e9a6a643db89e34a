"""Push subscriptions, direct sends and the scheduled-push queue."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import delete, select

from citadel.db.models import PushSubscription, ScheduledPush
from citadel.push.sender import PushDeliveryError, WebPushSender

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

POW_GOAL = "pow_goal"


@dataclass
class DeliveryResult:
    sent: int = 0
    failed: int = 0
    total: int = 0


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


async def subscribe(db: AsyncSession, user_id: int, endpoint: str, keys: dict[str, str]) -> PushSubscription:
    """Register ``endpoint`` for a user, refreshing its keys if already known."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
    )
    sub = result.scalar_one_or_none()
    if sub is None:
        sub = PushSubscription(user_id=user_id, endpoint=endpoint, keys=keys, created_at=now, updated_at=now)
        db.add(sub)
    else:
        sub.keys = keys
        sub.updated_at = now
    await db.flush()
    return sub


async def unsubscribe(db: AsyncSession, user_id: int, endpoint: str | None = None) -> int:
    """Remove one endpoint, or every subscription of the user when none is given."""
    stmt = delete(PushSubscription).where(PushSubscription.user_id == user_id)
    if endpoint:
        stmt = stmt.where(PushSubscription.endpoint == endpoint)
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount  # type: ignore[return-value]


async def _deliver(
    db: AsyncSession, sender: WebPushSender, subs: list[PushSubscription], payload: dict[str, Any]
) -> DeliveryResult:
    result = DeliveryResult(total=len(subs))
    for sub in subs:
        try:
            await sender.send(sub.endpoint, sub.keys, payload)
            result.sent += 1
        except PushDeliveryError as e:
            result.failed += 1
            if e.subscription_expired:
                await db.delete(sub)
                logger.info("push_subscription_expired", user_id=sub.user_id, status=e.status_code)
            else:
                logger.warning("push_delivery_failed", user_id=sub.user_id, error=str(e))
    await db.flush()
    return result


async def send_to_user(
    db: AsyncSession, sender: WebPushSender, user_id: int, payload: dict[str, Any]
) -> DeliveryResult:
    """
    Deliver ``payload`` to every subscription of a user.

    Raises:
        LookupError: If the user has no subscriptions.
    """
    result = await db.execute(select(PushSubscription).where(PushSubscription.user_id == user_id))
    subs = list(result.scalars().all())
    if not subs:
        msg = "No subscriptions found"
        raise LookupError(msg)
    return await _deliver(db, sender, subs, payload)


async def notify_users(
    db: AsyncSession, sender: WebPushSender, user_ids: list[int], payload: dict[str, Any]
) -> DeliveryResult:
    """Best-effort fanout; users without subscriptions are skipped."""
    if not user_ids:
        return DeliveryResult()
    result = await db.execute(select(PushSubscription).where(PushSubscription.user_id.in_(user_ids)))
    return await _deliver(db, sender, list(result.scalars().all()), payload)


# ---------------------------------------------------------------------------
# Scheduled pushes
# ---------------------------------------------------------------------------


def goal_reached_payload(pow_ref: str | None = None) -> dict[str, Any]:
    return {
        "title": "🎯 Goal time reached!",
        "body": "You reached your POW goal time. Stop the timer and certify it!",
        "tag": "pow-goal-reached",
        "requireInteraction": True,
        "data": {"url": "/pow-timer", "powId": pow_ref},
    }


async def schedule_push(
    db: AsyncSession,
    user_id: int,
    push_type: str,
    scheduled_at: datetime,
    payload: dict[str, Any],
) -> ScheduledPush:
    """Queue a push, replacing any existing one of the same type for the user."""
    await cancel_scheduled(db, user_id, push_type)
    item = ScheduledPush(
        user_id=user_id,
        type=push_type,
        scheduled_at=scheduled_at,
        payload=payload,
        sent=False,
        created_at=datetime.now(timezone.utc),
    )
    db.add(item)
    await db.flush()
    return item


async def schedule_goal_push(
    db: AsyncSession, user_id: int, goal_seconds: int, *, now: datetime | None = None, pow_ref: str | None = None
) -> ScheduledPush:
    now = now or datetime.now(timezone.utc)
    return await schedule_push(
        db, user_id, POW_GOAL, now + timedelta(seconds=goal_seconds), goal_reached_payload(pow_ref)
    )


async def cancel_scheduled(db: AsyncSession, user_id: int, push_type: str | None = None) -> int:
    stmt = delete(ScheduledPush).where(ScheduledPush.user_id == user_id)
    if push_type:
        stmt = stmt.where(ScheduledPush.type == push_type)
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount  # type: ignore[return-value]


async def process_scheduled(
    db: AsyncSession, sender: WebPushSender, *, now: datetime | None = None
) -> dict[str, int]:
    """
    Deliver every unsent push that is due.

    Each item is marked sent whatever the outcome. An item counts as a
    success when at least one subscription accepted it; items of users
    without subscriptions count as neither.
    """
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(ScheduledPush)
        .where(ScheduledPush.sent == False, ScheduledPush.scheduled_at <= now)  # noqa: E712
        .order_by(ScheduledPush.scheduled_at)
    )
    due = list(result.scalars().all())
    success = failed = 0

    for item in due:
        subs_result = await db.execute(select(PushSubscription).where(PushSubscription.user_id == item.user_id))
        subs = list(subs_result.scalars().all())
        if subs:
            delivery = await _deliver(db, sender, subs, item.payload)
            if delivery.sent:
                success += 1
            else:
                failed += 1
        item.sent = True
        item.sent_at = now

    await db.commit()
    if due:
        logger.info("scheduled_push_processed", processed=len(due), success=success, failed=failed)
    return {"processed": len(due), "success": success, "failed": failed}
