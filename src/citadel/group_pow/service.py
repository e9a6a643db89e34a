"""
Group POW business logic.

Every status change is a single conditional ``UPDATE ... WHERE status =
<expected>`` whose row count is checked, so of two racing calls at most
one succeeds. Pledge totals are incremented in SQL.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from citadel.config import get_settings
from citadel.db.models import GroupPow, GroupPowParticipant, User
from citadel.group_pow.lifecycle import (
    CANCELLED,
    COMPLETED,
    ONGOING,
    UPCOMING,
    GroupPowStateError,
    Settlement,
    check_start_window,
    settle,
    validate_transition,
)
from citadel.pow.fields import get_field

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

FINISHED_LIST_LIMIT = 10


class AlreadyCheckedError(ValueError):
    """Attendance was already recorded for this participant."""

    def __init__(self, checked_at: datetime | None) -> None:
        super().__init__("Attendance already checked")
        self.checked_at = checked_at


@dataclass(frozen=True)
class NewGroupPow:
    title: str
    field: str
    planned_date: datetime
    planned_duration: int
    target_sats: int
    creator_pledged_sats: int
    description: str | None = None
    location: str | None = None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_group_pow(db: AsyncSession, group_pow_id: int, *, with_participants: bool = False) -> GroupPow:
    """Raises LookupError if the group POW does not exist."""
    stmt = select(GroupPow).where(GroupPow.id == group_pow_id)
    if with_participants:
        stmt = stmt.options(
            selectinload(GroupPow.participants).selectinload(GroupPowParticipant.user),
            selectinload(GroupPow.creator),
        )
    result = await db.execute(stmt)
    group = result.scalar_one_or_none()
    if group is None:
        msg = "Group POW not found"
        raise LookupError(msg)
    return group


async def get_participant(db: AsyncSession, group_pow_id: int, user_id: int) -> GroupPowParticipant | None:
    result = await db.execute(
        select(GroupPowParticipant).where(
            GroupPowParticipant.group_pow_id == group_pow_id,
            GroupPowParticipant.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def list_participant_users(db: AsyncSession, group_pow_id: int) -> list[tuple[GroupPowParticipant, User]]:
    result = await db.execute(
        select(GroupPowParticipant, User)
        .join(User, User.id == GroupPowParticipant.user_id)
        .where(GroupPowParticipant.group_pow_id == group_pow_id)
        .order_by(GroupPowParticipant.id)
    )
    return [(p, u) for p, u in result.all()]


def _day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Start and end (UTC) of the calendar day containing ``now`` in the display timezone."""
    tz = timezone(timedelta(hours=get_settings().leaderboard_utc_offset_hours))
    local = now.astimezone(tz)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return start.astimezone(timezone.utc), (start + timedelta(days=1)).astimezone(timezone.utc)


async def list_group_pows(db: AsyncSession, *, now: datetime | None = None) -> dict[str, list[GroupPow]]:
    """Today's, upcoming and recently finished group POWs."""
    now = now or datetime.now(timezone.utc)
    day_start, day_end = _day_bounds(now)
    load = selectinload(GroupPow.creator)

    today = await db.execute(
        select(GroupPow)
        .options(load)
        .where(
            GroupPow.status.in_([UPCOMING, ONGOING]),
            or_(
                and_(GroupPow.planned_date >= day_start, GroupPow.planned_date < day_end),
                GroupPow.status == ONGOING,
            ),
        )
        .order_by(GroupPow.planned_date)
    )
    upcoming = await db.execute(
        select(GroupPow)
        .options(load)
        .where(GroupPow.status == UPCOMING, GroupPow.planned_date >= day_end)
        .order_by(GroupPow.planned_date)
    )
    finished = await db.execute(
        select(GroupPow)
        .options(load)
        .where(GroupPow.status.in_([COMPLETED, CANCELLED]))
        .order_by(GroupPow.planned_date.desc())
        .limit(FINISHED_LIST_LIMIT)
    )
    return {
        "today": list(today.scalars().all()),
        "upcoming": list(upcoming.scalars().all()),
        "finished": list(finished.scalars().all()),
    }


async def participant_counts(db: AsyncSession, group_pow_ids: list[int]) -> dict[int, int]:
    if not group_pow_ids:
        return {}
    result = await db.execute(
        select(GroupPowParticipant.group_pow_id, func.count())
        .where(GroupPowParticipant.group_pow_id.in_(group_pow_ids))
        .group_by(GroupPowParticipant.group_pow_id)
    )
    return {gid: int(count) for gid, count in result.all()}


# ---------------------------------------------------------------------------
# Create / join
# ---------------------------------------------------------------------------


def _check_pledge(pledged_sats: int) -> None:
    minimum = get_settings().min_pledge_sats
    if pledged_sats < minimum:
        msg = f"Pledge must be at least {minimum} sats"
        raise ValueError(msg)


async def create_group_pow(
    db: AsyncSession,
    creator: User,
    data: NewGroupPow,
    *,
    thumbnail_url: str | None = None,
    now: datetime | None = None,
) -> GroupPow:
    """Create an upcoming group POW with the creator enrolled as first participant."""
    get_field(data.field)
    _check_pledge(data.creator_pledged_sats)
    if data.planned_duration <= 0:
        msg = "planned_duration must be positive"
        raise ValueError(msg)
    if data.target_sats <= 0:
        msg = "target_sats must be positive"
        raise ValueError(msg)

    now = now or datetime.now(timezone.utc)
    group = GroupPow(
        creator_id=creator.id,
        title=data.title,
        field=data.field,
        description=data.description,
        location=data.location,
        thumbnail_url=thumbnail_url,
        planned_date=data.planned_date,
        planned_duration=data.planned_duration,
        target_sats=data.target_sats,
        actual_sats_collected=data.creator_pledged_sats,
        status=UPCOMING,
        created_at=now,
    )
    db.add(group)
    await db.flush()
    db.add(
        GroupPowParticipant(
            group_pow_id=group.id,
            user_id=creator.id,
            pledged_sats=data.creator_pledged_sats,
            created_at=now,
        )
    )
    await db.commit()
    logger.info("group_pow_created", group_pow_id=group.id, creator_id=creator.id, title=data.title)
    return group


async def join_group_pow(
    db: AsyncSession, group_pow_id: int, user: User, pledged_sats: int, *, now: datetime | None = None
) -> GroupPowParticipant:
    """
    Enroll ``user`` with a pledge.

    Raises:
        LookupError: Unknown group POW.
        ValueError: Not upcoming, already joined, or pledge below minimum.
    """
    _check_pledge(pledged_sats)
    group = await get_group_pow(db, group_pow_id)
    if group.status != UPCOMING:
        msg = "Can only join an upcoming group POW"
        raise GroupPowStateError(msg)
    if await get_participant(db, group_pow_id, user.id) is not None:
        msg = "Already joined this group POW"
        raise ValueError(msg)

    now = now or datetime.now(timezone.utc)
    participant = GroupPowParticipant(
        group_pow_id=group_pow_id, user_id=user.id, pledged_sats=pledged_sats, created_at=now
    )
    db.add(participant)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        msg = "Already joined this group POW"
        raise ValueError(msg) from None

    result = await db.execute(
        update(GroupPow)
        .where(GroupPow.id == group_pow_id, GroupPow.status == UPCOMING)
        .values(actual_sats_collected=GroupPow.actual_sats_collected + pledged_sats)
    )
    if result.rowcount != 1:
        await db.rollback()
        msg = "Can only join an upcoming group POW"
        raise GroupPowStateError(msg)
    await db.commit()
    logger.info("group_pow_joined", group_pow_id=group_pow_id, user_id=user.id, pledged_sats=pledged_sats)
    return participant


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def _require_creator(group: GroupPow, user: User, action: str) -> None:
    if group.creator_id != user.id:
        msg = f"Only the creator can {action} this group POW"
        raise PermissionError(msg)


async def _apply_transition(db: AsyncSession, group: GroupPow, expected: str, **values: object) -> None:
    result = await db.execute(
        update(GroupPow).where(GroupPow.id == group.id, GroupPow.status == expected).values(**values)
    )
    if result.rowcount != 1:
        await db.rollback()
        msg = f"Group POW is no longer {expected}"
        raise GroupPowStateError(msg)


async def start_group_pow(db: AsyncSession, group_pow_id: int, user: User, *, now: datetime | None = None) -> GroupPow:
    """
    upcoming -> ongoing, inside the start window around ``planned_date``.

    Raises:
        LookupError, PermissionError, GroupPowStateError, StartWindowError.
    """
    group = await get_group_pow(db, group_pow_id)
    _require_creator(group, user, "start")
    validate_transition(group.status, ONGOING)

    now = now or datetime.now(timezone.utc)
    window = timedelta(minutes=get_settings().group_pow_start_window_minutes)
    check_start_window(group.planned_date, now, window)

    await _apply_transition(db, group, UPCOMING, status=ONGOING, started_at=now)
    await db.commit()
    await db.refresh(group)
    logger.info("group_pow_started", group_pow_id=group.id)
    return group


async def end_group_pow(
    db: AsyncSession, group_pow_id: int, user: User, *, now: datetime | None = None
) -> tuple[GroupPow, Settlement]:
    """
    ongoing -> completed, settling every pledge at the group's achievement rate.

    Raises:
        LookupError, PermissionError, GroupPowStateError.
    """
    group = await get_group_pow(db, group_pow_id)
    _require_creator(group, user, "end")
    validate_transition(group.status, COMPLETED)
    if group.started_at is None:
        msg = "Group POW has no start time"
        raise GroupPowStateError(msg)

    now = now or datetime.now(timezone.utc)
    participants = (
        await db.execute(select(GroupPowParticipant).where(GroupPowParticipant.group_pow_id == group.id))
    ).scalars().all()
    settlement = settle(group.started_at, now, group.planned_duration, {p.id: p.pledged_sats for p in participants})

    await _apply_transition(
        db,
        group,
        ONGOING,
        status=COMPLETED,
        ended_at=now,
        actual_duration=settlement.actual_duration,
        achievement_rate=settlement.achievement_rate,
        actual_sats_collected=settlement.total_sats,
    )
    for participant in participants:
        participant.actual_sats = settlement.payouts[participant.id]
    await db.commit()
    await db.refresh(group)
    logger.info(
        "group_pow_ended",
        group_pow_id=group.id,
        achievement_rate=settlement.achievement_rate,
        total_sats=settlement.total_sats,
    )
    return group, settlement


async def cancel_group_pow(db: AsyncSession, group_pow_id: int, user: User, *, now: datetime | None = None) -> GroupPow:
    """
    upcoming -> cancelled.

    Raises:
        LookupError, PermissionError, GroupPowStateError.
    """
    group = await get_group_pow(db, group_pow_id)
    _require_creator(group, user, "cancel")
    validate_transition(group.status, CANCELLED)

    now = now or datetime.now(timezone.utc)
    await _apply_transition(db, group, UPCOMING, status=CANCELLED, cancelled_at=now)
    await db.commit()
    await db.refresh(group)
    logger.info("group_pow_cancelled", group_pow_id=group.id)
    return group


# ---------------------------------------------------------------------------
# Attendance
# ---------------------------------------------------------------------------


async def check_attendance(
    db: AsyncSession, group_pow_id: int, user: User, *, now: datetime | None = None
) -> GroupPowParticipant:
    """
    Record attendance once per participant while the group POW is ongoing.

    Raises:
        LookupError: Unknown group POW.
        PermissionError: Not a participant.
        GroupPowStateError: Not ongoing.
        AlreadyCheckedError: Attendance already recorded.
    """
    group = await get_group_pow(db, group_pow_id)
    if group.status != ONGOING:
        msg = "Attendance can only be checked while the group POW is ongoing"
        raise GroupPowStateError(msg)
    participant = await get_participant(db, group_pow_id, user.id)
    if participant is None:
        msg = "Not a participant of this group POW"
        raise PermissionError(msg)
    if participant.attendance_checked:
        raise AlreadyCheckedError(participant.attendance_checked_at)

    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(GroupPowParticipant)
        .where(GroupPowParticipant.id == participant.id, GroupPowParticipant.attendance_checked == False)  # noqa: E712
        .values(attendance_checked=True, attendance_checked_at=now)
    )
    if result.rowcount != 1:
        await db.rollback()
        refreshed = await get_participant(db, group_pow_id, user.id)
        raise AlreadyCheckedError(refreshed.attendance_checked_at if refreshed else None)
    await db.commit()
    await db.refresh(participant)
    return participant


async def record_invoice(db: AsyncSession, participant_id: int, payment_request: str) -> None:
    await db.execute(
        update(GroupPowParticipant).where(GroupPowParticipant.id == participant_id).values(invoice_id=payment_request)
    )
    await db.commit()


async def mark_invoice_paid(
    db: AsyncSession, group_pow_id: int, user: User, *, now: datetime | None = None
) -> GroupPowParticipant:
    """Flag the participant's settlement invoice as paid."""
    participant = await get_participant(db, group_pow_id, user.id)
    if participant is None:
        msg = "Not a participant of this group POW"
        raise PermissionError(msg)
    if participant.invoice_id is None:
        msg = "No invoice has been issued"
        raise ValueError(msg)
    participant.invoice_paid = True
    participant.invoice_paid_at = now or datetime.now(timezone.utc)
    await db.commit()
    return participant
