"""POW router: timer session, completion, donation and records."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import ValidationError
from redis.asyncio import Redis
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from citadel.auth.dependencies import get_current_user, require_member_role
from citadel.config import get_settings
from citadel.database import get_session
from citadel.db.models import PowRecord, User
from citadel.dependencies import get_discord_client, get_storage_client
from citadel.discord.client import DiscordClient
from citadel.pow import timer as timer_sm
from citadel.pow.announcements import (
    announce_accumulated_donation,
    announce_completion,
    media_attachments,
)
from citadel.pow.schemas import (
    AccumulatedResponse,
    DonateRequest,
    DonateResponse,
    PowCompleteData,
    PowRecordListResponse,
    PowRecordResponse,
    TimerResponse,
    TimerStartRequest,
)
from citadel.pow.service import (
    STATUS_ACCUMULATED,
    PowCompletion,
    complete_pow,
    donate_accumulated,
    donate_immediate,
    get_record,
    list_records,
)
from citadel.pow.timer_store import PowGoal, TimerSession, clear_session, load_session, save_session
from citadel.push.service import POW_GOAL, cancel_scheduled, schedule_goal_push
from citadel.redis_client import get_redis
from citadel.storage import StorageClient, StorageError, object_name

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/pow", tags=["POW"])


def _timer_response(session: TimerSession, now: datetime) -> TimerResponse:
    state = timer_sm.tick(session.timer, now)
    draft = timer_sm.progress(state, session.goal.goal_time, session.goal.target_sats)
    return TimerResponse(
        status=state.status,
        field=session.goal.field,
        goal_content=session.goal.goal_content,
        goal_time=session.goal.goal_time,
        target_sats=session.goal.target_sats,
        mode=session.goal.mode,
        started_at=state.started_at,
        last_paused_at=state.last_paused_at,
        total_paused_seconds=state.total_paused_seconds,
        elapsed_seconds=state.elapsed_seconds,
        achievement_rate=draft.achievement_rate,
        projected_sats=draft.actual_sats,
    )


async def _require_session(redis: Redis, user_id: int) -> TimerSession:
    session = await load_session(redis, user_id)
    if session is None:
        raise HTTPException(status_code=404, detail="No active timer")
    return session


# ---------------------------------------------------------------------------
# Timer session
# ---------------------------------------------------------------------------


@router.get("/timer", response_model=TimerResponse)
async def get_timer(
    user: User = Depends(get_current_user),
    redis: Redis = Depends(get_redis),  # type: ignore[assignment]
) -> TimerResponse:
    session = await _require_session(redis, user.id)
    return _timer_response(session, datetime.now(timezone.utc))


@router.post("/timer/start", response_model=TimerResponse)
async def start_timer(
    body: TimerStartRequest,
    user: User = Depends(require_member_role),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),  # type: ignore[assignment]
) -> TimerResponse:
    """Start a new goal session. A stopped but unsubmitted session is discarded."""
    now = datetime.now(timezone.utc)
    existing = await load_session(redis, user.id)
    if existing is not None and existing.timer.status in ("running", "paused"):
        raise HTTPException(status_code=400, detail="A timer is already in progress")

    goal = PowGoal(
        field=body.field,
        goal_content=body.goal_content,
        goal_time=body.goal_time,
        target_sats=body.target_sats,
        mode=body.mode,
    )
    session = TimerSession(goal=goal, timer=timer_sm.start(timer_sm.reset(), now))
    await save_session(redis, user.id, session)

    await schedule_goal_push(db, user.id, body.goal_time, now=now)
    await db.commit()
    return _timer_response(session, now)


async def _transition(
    redis: Redis, user: User, action: str, now: datetime
) -> TimerSession:
    session = await _require_session(redis, user.id)
    step = {"pause": timer_sm.pause, "resume": timer_sm.resume, "stop": timer_sm.stop}[action]
    try:
        new_state = step(session.timer, now)
    except timer_sm.TimerStateError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    session = TimerSession(goal=session.goal, timer=new_state)
    await save_session(redis, user.id, session)
    return session


@router.post("/timer/pause", response_model=TimerResponse)
async def pause_timer(
    user: User = Depends(require_member_role),
    redis: Redis = Depends(get_redis),  # type: ignore[assignment]
) -> TimerResponse:
    now = datetime.now(timezone.utc)
    return _timer_response(await _transition(redis, user, "pause", now), now)


@router.post("/timer/resume", response_model=TimerResponse)
async def resume_timer(
    user: User = Depends(require_member_role),
    redis: Redis = Depends(get_redis),  # type: ignore[assignment]
) -> TimerResponse:
    now = datetime.now(timezone.utc)
    return _timer_response(await _transition(redis, user, "resume", now), now)


@router.post("/timer/stop", response_model=TimerResponse)
async def stop_timer(
    user: User = Depends(require_member_role),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),  # type: ignore[assignment]
) -> TimerResponse:
    now = datetime.now(timezone.utc)
    session = await _transition(redis, user, "stop", now)
    await cancel_scheduled(db, user.id, POW_GOAL)
    await db.commit()
    return _timer_response(session, now)


@router.delete("/timer")
async def reset_timer(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),  # type: ignore[assignment]
) -> dict[str, bool]:
    cleared = await clear_session(redis, user.id)
    await cancel_scheduled(db, user.id, POW_GOAL)
    await db.commit()
    return {"success": True, "cleared": cleared}


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


@router.post("/complete", response_model=PowRecordResponse, status_code=201)
async def complete(
    background_tasks: BackgroundTasks,
    pow_data: str = Form(...),
    certification_card: UploadFile | None = File(None),
    media_files: list[UploadFile] | None = File(None),
    user: User = Depends(require_member_role),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),  # type: ignore[assignment]
    storage: StorageClient = Depends(get_storage_client),
    discord: DiscordClient = Depends(get_discord_client),
) -> PowRecordResponse:
    """Persist a finished POW from the multipart certification form."""
    try:
        data = PowCompleteData.model_validate(json.loads(pow_data))
    except (json.JSONDecodeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid pow_data: {e}") from e

    session = await load_session(redis, user.id)
    actual_time = data.actual_time
    if actual_time is None:
        if session is None:
            raise HTTPException(status_code=400, detail="actual_time is required without a stopped timer")
        try:
            draft = timer_sm.completion_draft(session.timer, data.goal_time, data.target_sats)
        except timer_sm.TimerStateError as e:
            raise HTTPException(status_code=400, detail="actual_time is required without a stopped timer") from e
        actual_time = draft.actual_time

    card_bytes = await certification_card.read() if certification_card is not None else None
    image_url = None
    if card_bytes:
        try:
            image_url = await storage.upload(
                get_settings().storage_pow_bucket, object_name(user.id), card_bytes, "image/jpeg"
            )
        except StorageError:
            logger.warning("certification_upload_failed", user_id=user.id, exc_info=True)

    completion = PowCompletion(
        field=data.field,
        goal_content=data.goal_content,
        goal_time=data.goal_time,
        actual_time=actual_time,
        target_sats=data.target_sats,
        mode=data.mode,
        memo=data.memo,
        group_pow_id=data.group_pow_id,
        started_at=data.started_at or (session.timer.started_at if session else None),
        total_paused_time=data.total_paused_time or (session.timer.total_paused_seconds if session else 0),
        paid=data.paid,
    )
    try:
        record = await complete_pow(db, user, completion, image_url=image_url)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if session is not None and session.timer.status == "stopped":
        await clear_session(redis, user.id)

    media = [(await f.read(), f.content_type or "application/octet-stream") for f in media_files or []]
    background_tasks.add_task(
        announce_completion, discord, record.id, card_bytes or None, media_attachments(media)
    )
    return PowRecordResponse.model_validate(record)


# ---------------------------------------------------------------------------
# Donation
# ---------------------------------------------------------------------------


@router.post("/donate", response_model=DonateResponse)
async def donate(
    body: DonateRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_member_role),
    db: AsyncSession = Depends(get_session),
    discord: DiscordClient = Depends(get_discord_client),
) -> DonateResponse:
    try:
        if body.mode == "immediate":
            record = await donate_immediate(db, user, body.pow_record_id)  # type: ignore[arg-type]
            donated, settled = record.actual_sats, 1
        else:
            amount = body.amount or 0
            settled = await donate_accumulated(db, user, amount)
            donated = amount
            background_tasks.add_task(announce_accumulated_donation, discord, user.id, amount)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return DonateResponse(
        mode=body.mode,
        donated_sats=donated,
        records_settled=settled,
        accumulated_sats=user.accumulated_sats,
        total_donated_sats=user.total_donated_sats,
    )


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@router.get("/records", response_model=PowRecordListResponse)
async def records(
    status: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> PowRecordListResponse:
    items, total = await list_records(db, user.id, status=status, limit=limit, offset=offset)
    return PowRecordListResponse(
        records=[PowRecordResponse.model_validate(r) for r in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/records/{record_id}", response_model=PowRecordResponse)
async def record_detail(
    record_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> PowRecordResponse:
    record = await get_record(db, record_id)
    if record is None or record.user_id != user.id:
        raise HTTPException(status_code=404, detail="POW record not found")
    return PowRecordResponse.model_validate(record)


@router.get("/accumulated", response_model=AccumulatedResponse)
async def accumulated(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> AccumulatedResponse:
    pending = await db.execute(
        select(func.count())
        .select_from(PowRecord)
        .where(PowRecord.user_id == user.id, PowRecord.status == STATUS_ACCUMULATED)
    )
    return AccumulatedResponse(
        accumulated_sats=user.accumulated_sats,
        total_donated_sats=user.total_donated_sats,
        pending_records=int(pending.scalar_one()),
    )
