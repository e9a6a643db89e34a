"""
Personal POW completion and donation settlement.

The server recomputes achievement rate and donation amount from the
submitted times and target; client-computed values are never trusted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select, update

from citadel.db.models import FieldDonation, PowRecord, User
from citadel.group_pow.service import get_group_pow, get_participant
from citadel.pow.calculations import calculate_achievement_rate, calculate_actual_sats
from citadel.pow.fields import get_field

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

MODE_IMMEDIATE = "immediate"
MODE_ACCUMULATED = "accumulated"

STATUS_IN_PROGRESS = "in_progress"  # reserved; records are only persisted at completion
STATUS_COMPLETED = "completed"
STATUS_ACCUMULATED = "accumulated"
STATUS_DONATED_IMMEDIATE = "donated_immediate"
STATUS_DONATED_FROM_ACCUMULATED = "donated_from_accumulated"

DONATED_STATUSES = (STATUS_DONATED_IMMEDIATE, STATUS_DONATED_FROM_ACCUMULATED)


class InsufficientBalanceError(ValueError):
    """Accumulated donation larger than the user's balance."""


@dataclass(frozen=True)
class PowCompletion:
    field: str
    goal_content: str
    goal_time: int
    actual_time: int
    target_sats: int
    mode: str
    memo: str | None = None
    group_pow_id: int | None = None
    started_at: datetime | None = None
    total_paused_time: int = 0
    paid: bool = False


def _resolve_status(mode: str, paid: bool) -> str:
    if mode == MODE_ACCUMULATED:
        return STATUS_ACCUMULATED
    if mode == MODE_IMMEDIATE:
        return STATUS_DONATED_IMMEDIATE if paid else STATUS_COMPLETED
    msg = f"Invalid mode: {mode}"
    raise ValueError(msg)


async def complete_pow(
    db: AsyncSession,
    user: User,
    data: PowCompletion,
    *,
    image_url: str | None = None,
    now: datetime | None = None,
) -> PowRecord:
    """
    Persist a finished POW and apply its counter side effects.

    Raises:
        ValueError: On an unknown field/mode or non-positive goal time.
        LookupError: ``group_pow_id`` names no group POW.
        PermissionError: The user did not join that group POW.
    """
    get_field(data.field)
    if data.goal_time <= 0:
        msg = "goal_time must be positive"
        raise ValueError(msg)
    if data.actual_time < 0:
        msg = "actual_time must not be negative"
        raise ValueError(msg)
    if data.group_pow_id is not None:
        await get_group_pow(db, data.group_pow_id)
        if await get_participant(db, data.group_pow_id, user.id) is None:
            msg = "Not a participant of this group POW"
            raise PermissionError(msg)

    now = now or datetime.now(timezone.utc)
    status = _resolve_status(data.mode, data.paid)
    rate = calculate_achievement_rate(data.goal_time, data.actual_time)
    actual_sats = calculate_actual_sats(data.target_sats, rate)

    record = PowRecord(
        user_id=user.id,
        field=data.field,
        goal_content=data.goal_content,
        goal_time=data.goal_time,
        actual_time=data.actual_time,
        achievement_rate=rate,
        target_sats=data.target_sats,
        actual_sats=actual_sats,
        mode=data.mode,
        status=status,
        group_pow_id=data.group_pow_id,
        memo=data.memo,
        image_url=image_url,
        started_at=data.started_at,
        total_paused_time=data.total_paused_time,
        completed_at=now,
        donated_at=now if status == STATUS_DONATED_IMMEDIATE else None,
        created_at=now,
    )
    db.add(record)
    await db.flush()

    counters: dict[str, object] = {
        "total_pow_time": User.total_pow_time + data.actual_time,
        "updated_at": now,
    }
    if status == STATUS_ACCUMULATED:
        counters["accumulated_sats"] = User.accumulated_sats + actual_sats
    elif status == STATUS_DONATED_IMMEDIATE:
        counters["total_donated_sats"] = User.total_donated_sats + actual_sats
    await db.execute(update(User).where(User.id == user.id).values(**counters))

    db.add(
        FieldDonation(
            user_id=user.id,
            pow_record_id=record.id,
            field=data.field,
            donated_sats=actual_sats,
            mode=data.mode,
            created_at=now,
        )
    )
    await db.commit()
    await db.refresh(user)

    logger.info(
        "pow_completed",
        user_id=user.id,
        pow_record_id=record.id,
        field=data.field,
        achievement_rate=rate,
        actual_sats=actual_sats,
        status=status,
    )
    return record


async def get_record(db: AsyncSession, record_id: int) -> PowRecord | None:
    result = await db.execute(select(PowRecord).where(PowRecord.id == record_id))
    return result.scalar_one_or_none()


async def donate_immediate(
    db: AsyncSession, user: User, pow_record_id: int, *, now: datetime | None = None
) -> PowRecord:
    """
    Mark an immediate-mode record as paid.

    Raises:
        LookupError: Record not found.
        PermissionError: Record belongs to another user.
        ValueError: Record is not awaiting payment.
    """
    record = await get_record(db, pow_record_id)
    if record is None:
        msg = "POW record not found"
        raise LookupError(msg)
    if record.user_id != user.id:
        msg = "Not your POW record"
        raise PermissionError(msg)

    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(PowRecord)
        .where(PowRecord.id == record.id, PowRecord.status == STATUS_COMPLETED)
        .values(status=STATUS_DONATED_IMMEDIATE, donated_at=now)
    )
    if result.rowcount != 1:
        msg = f"POW record is {record.status}, expected {STATUS_COMPLETED}"
        raise ValueError(msg)

    await db.execute(
        update(User)
        .where(User.id == user.id)
        .values(total_donated_sats=User.total_donated_sats + record.actual_sats, updated_at=now)
    )
    await db.commit()
    await db.refresh(record)
    await db.refresh(user)
    logger.info("pow_donated", user_id=user.id, pow_record_id=record.id, sats=record.actual_sats)
    return record


async def donate_accumulated(db: AsyncSession, user: User, amount: int, *, now: datetime | None = None) -> int:
    """
    Pay out the accumulated balance in one batch.

    Every ``accumulated`` record of the user becomes
    ``donated_from_accumulated`` and the balance is zeroed.

    Returns:
        Number of records settled.

    Raises:
        ValueError: Non-positive amount.
        InsufficientBalanceError: ``amount`` exceeds the balance.
    """
    if amount <= 0:
        msg = "Amount must be positive"
        raise ValueError(msg)

    now = now or datetime.now(timezone.utc)
    # Conditional on the balance so two concurrent payouts cannot both pass
    result = await db.execute(
        update(User)
        .where(User.id == user.id, User.accumulated_sats >= amount)
        .values(
            accumulated_sats=0,
            total_donated_sats=User.total_donated_sats + amount,
            updated_at=now,
        )
    )
    if result.rowcount != 1:
        msg = "Insufficient accumulated sats"
        raise InsufficientBalanceError(msg)

    settled = await db.execute(
        update(PowRecord)
        .where(PowRecord.user_id == user.id, PowRecord.status == STATUS_ACCUMULATED)
        .values(status=STATUS_DONATED_FROM_ACCUMULATED, donated_at=now)
    )
    await db.commit()
    await db.refresh(user)
    logger.info("accumulated_donated", user_id=user.id, sats=amount, records=settled.rowcount)
    return int(settled.rowcount or 0)


async def list_records(
    db: AsyncSession,
    user_id: int,
    *,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[PowRecord], int]:
    """A user's records, newest first, with the total count for pagination."""
    stmt = select(PowRecord).where(PowRecord.user_id == user_id)
    count_stmt = select(func.count()).select_from(PowRecord).where(PowRecord.user_id == user_id)
    if status:
        stmt = stmt.where(PowRecord.status == status)
        count_stmt = count_stmt.where(PowRecord.status == status)

    total = (await db.execute(count_stmt)).scalar_one()
    result = await db.execute(
        stmt.order_by(PowRecord.created_at.desc(), PowRecord.id.desc()).limit(limit).offset(offset)
    )
    return list(result.scalars().all()), int(total)
