"""Group POW router: /api/v1/group-pow/* endpoints."""

from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from citadel.auth.dependencies import get_current_user, require_member_role
from citadel.config import get_settings
from citadel.database import get_session
from citadel.db.models import GroupPow, User
from citadel.dependencies import get_blink_client, get_discord_client, get_push_sender, get_storage_client
from citadel.discord.client import DiscordClient
from citadel.group_pow import notifications, service
from citadel.group_pow.lifecycle import StartWindowError
from citadel.group_pow.schemas import (
    AttendanceResponse,
    AttendanceStatusResponse,
    CancelResponse,
    CreatorSummary,
    EndResponse,
    GroupPowDetailResponse,
    GroupPowListResponse,
    GroupPowResponse,
    JoinRequest,
    JoinResponse,
    ParticipantResponse,
    StartResponse,
)
from citadel.payments.blink import BlinkClient
from citadel.push.sender import WebPushSender
from citadel.storage import StorageClient, StorageError, object_name

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/group-pow", tags=["Group POW"])


def _group_response(group: GroupPow, participant_count: int = 0, creator: User | None = None) -> GroupPowResponse:
    data = GroupPowResponse.model_validate(
        {c.key: getattr(group, c.key) for c in inspect(GroupPow).column_attrs}
    )
    data.participant_count = participant_count
    if creator is None and "creator" not in inspect(group).unloaded:
        creator = group.creator
    if creator is not None:
        data.creator = CreatorSummary.model_validate(creator)
    return data


def _http_error(e: Exception) -> HTTPException:
    """Translate a service exception into the matching HTTP error."""
    if isinstance(e, LookupError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PermissionError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, StartWindowError):
        detail: dict[str, object] = {"message": str(e)}
        if e.can_start_at is not None:
            detail["can_start_at"] = e.can_start_at.isoformat()
            detail["minutes_remaining"] = e.minutes_remaining
        return HTTPException(status_code=400, detail=detail)
    if isinstance(e, service.AlreadyCheckedError):
        return HTTPException(
            status_code=400,
            detail={
                "message": str(e),
                "already_checked": True,
                "attendance_checked_at": e.checked_at.isoformat() if e.checked_at else None,
            },
        )
    return HTTPException(status_code=400, detail=str(e))


# ---------------------------------------------------------------------------
# Listing / detail
# ---------------------------------------------------------------------------


@router.get("", response_model=GroupPowListResponse)
async def list_group_pows(db: AsyncSession = Depends(get_session)) -> GroupPowListResponse:
    groups = await service.list_group_pows(db)
    counts = await service.participant_counts(db, [g.id for bucket in groups.values() for g in bucket])
    return GroupPowListResponse(
        **{name: [_group_response(g, counts.get(g.id, 0)) for g in bucket] for name, bucket in groups.items()}
    )


@router.get("/{group_pow_id}", response_model=GroupPowDetailResponse)
async def group_pow_detail(group_pow_id: int, db: AsyncSession = Depends(get_session)) -> GroupPowDetailResponse:
    try:
        group = await service.get_group_pow(db, group_pow_id, with_participants=True)
    except LookupError as e:
        raise _http_error(e) from e
    base = _group_response(group, len(group.participants))
    return GroupPowDetailResponse(
        **base.model_dump(),
        participants=[
            ParticipantResponse(
                id=p.id,
                user_id=p.user_id,
                discord_username=p.user.discord_username,
                discord_avatar_url=p.user.discord_avatar_url,
                pledged_sats=p.pledged_sats,
                actual_sats=p.actual_sats,
                attendance_checked=p.attendance_checked,
                attendance_checked_at=p.attendance_checked_at,
                invoice_paid=p.invoice_paid,
                invoice_paid_at=p.invoice_paid_at,
            )
            for p in group.participants
        ],
    )


# ---------------------------------------------------------------------------
# Create / join
# ---------------------------------------------------------------------------


@router.post("", response_model=GroupPowResponse, status_code=201)
async def create_group_pow(
    background_tasks: BackgroundTasks,
    title: str = Form(..., min_length=1),
    field: str = Form(...),
    planned_date: datetime = Form(...),
    planned_duration: int = Form(..., gt=0),
    target_sats: int = Form(..., gt=0),
    creator_pledged_sats: int = Form(...),
    description: str | None = Form(None),
    location: str | None = Form(None),
    thumbnail: UploadFile | None = File(None),
    user: User = Depends(require_member_role),
    db: AsyncSession = Depends(get_session),
    storage: StorageClient = Depends(get_storage_client),
    discord: DiscordClient = Depends(get_discord_client),
) -> GroupPowResponse:
    settings = get_settings()
    if len(title) > settings.max_group_pow_title_length:
        raise HTTPException(status_code=400, detail="Title is too long")
    if description and len(description) > settings.max_group_pow_description_length:
        raise HTTPException(status_code=400, detail="Description is too long")
    if planned_date.tzinfo is None:
        raise HTTPException(status_code=400, detail="planned_date must include a timezone offset")

    thumbnail_url = None
    if thumbnail is not None:
        content = await thumbnail.read()
        if content:
            try:
                thumbnail_url = await storage.upload(
                    settings.storage_group_pow_bucket,
                    object_name(user.id),
                    content,
                    thumbnail.content_type or "image/jpeg",
                )
            except StorageError:
                logger.warning("thumbnail_upload_failed", user_id=user.id, exc_info=True)

    data = service.NewGroupPow(
        title=title,
        field=field,
        planned_date=planned_date,
        planned_duration=planned_duration,
        target_sats=target_sats,
        creator_pledged_sats=creator_pledged_sats,
        description=description or None,
        location=location or None,
    )
    try:
        group = await service.create_group_pow(db, user, data, thumbnail_url=thumbnail_url)
    except ValueError as e:
        raise _http_error(e) from e

    background_tasks.add_task(notifications.announce_created, discord, group.id)
    return _group_response(group, 1, creator=user)


@router.post("/{group_pow_id}/join", response_model=JoinResponse)
async def join(
    group_pow_id: int,
    body: JoinRequest,
    user: User = Depends(require_member_role),
    db: AsyncSession = Depends(get_session),
) -> JoinResponse:
    try:
        participant = await service.join_group_pow(db, group_pow_id, user, body.pledged_sats)
        group = await service.get_group_pow(db, group_pow_id)
    except (LookupError, ValueError) as e:
        raise _http_error(e) from e
    await db.refresh(group)
    return JoinResponse(
        participant_id=participant.id,
        pledged_sats=participant.pledged_sats,
        actual_sats_collected=group.actual_sats_collected,
    )


# ---------------------------------------------------------------------------
# Transitions (creator only)
# ---------------------------------------------------------------------------


@router.post("/{group_pow_id}/start", response_model=StartResponse)
async def start(
    group_pow_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_member_role),
    db: AsyncSession = Depends(get_session),
    discord: DiscordClient = Depends(get_discord_client),
    sender: WebPushSender = Depends(get_push_sender),
) -> StartResponse:
    try:
        group = await service.start_group_pow(db, group_pow_id, user)
    except (LookupError, PermissionError, ValueError) as e:
        raise _http_error(e) from e
    background_tasks.add_task(notifications.notify_started, discord, sender, group.id)
    return StartResponse(started_at=group.started_at)  # type: ignore[arg-type]


@router.post("/{group_pow_id}/end", response_model=EndResponse)
async def end(
    group_pow_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_member_role),
    db: AsyncSession = Depends(get_session),
    discord: DiscordClient = Depends(get_discord_client),
    blink: BlinkClient = Depends(get_blink_client),
) -> EndResponse:
    try:
        group, settlement = await service.end_group_pow(db, group_pow_id, user)
    except (LookupError, PermissionError, ValueError) as e:
        raise _http_error(e) from e
    background_tasks.add_task(notifications.send_settlement_invoices, discord, blink, group.id)
    return EndResponse(
        ended_at=group.ended_at,  # type: ignore[arg-type]
        actual_duration=settlement.actual_duration,
        achievement_rate=settlement.achievement_rate,
        total_actual_sats=settlement.total_sats,
    )


@router.post("/{group_pow_id}/cancel", response_model=CancelResponse)
async def cancel(
    group_pow_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_member_role),
    db: AsyncSession = Depends(get_session),
    discord: DiscordClient = Depends(get_discord_client),
) -> CancelResponse:
    try:
        group = await service.cancel_group_pow(db, group_pow_id, user)
    except (LookupError, PermissionError, ValueError) as e:
        raise _http_error(e) from e
    background_tasks.add_task(notifications.notify_cancelled, discord, group.id)
    return CancelResponse(cancelled_at=group.cancelled_at)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Attendance & settlement
# ---------------------------------------------------------------------------


@router.post("/{group_pow_id}/attendance", response_model=AttendanceResponse)
async def check_attendance(
    group_pow_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> AttendanceResponse:
    try:
        participant = await service.check_attendance(db, group_pow_id, user)
    except (LookupError, PermissionError, ValueError) as e:
        raise _http_error(e) from e
    return AttendanceResponse(checked_at=participant.attendance_checked_at)  # type: ignore[arg-type]


@router.get("/{group_pow_id}/attendance", response_model=AttendanceStatusResponse)
async def attendance_status(
    group_pow_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> AttendanceStatusResponse:
    participant = await service.get_participant(db, group_pow_id, user.id)
    if participant is None:
        return AttendanceStatusResponse(is_participant=False)
    return AttendanceStatusResponse(
        is_participant=True,
        attendance_checked=participant.attendance_checked,
        attendance_checked_at=participant.attendance_checked_at,
        pledged_sats=participant.pledged_sats,
    )


@router.post("/{group_pow_id}/invoice/paid")
async def invoice_paid(
    group_pow_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, bool]:
    """Record that the caller paid their settlement invoice."""
    try:
        await service.mark_invoice_paid(db, group_pow_id, user)
    except (PermissionError, ValueError) as e:
        raise _http_error(e) from e
    return {"success": True}
