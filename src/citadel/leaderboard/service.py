"""
Weekly leaderboards and the weekly archive.

Live boards are aggregated from ``pow_records`` on every read; the
archive job freezes the top 3 of each board into ``weekly_rankings``
once per week, just before the reset.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from citadel.config import get_settings
from citadel.db.models import DiscordReaction, PowRecord, User, WeeklyRanking
from citadel.leaderboard.week_utils import get_week_boundaries, get_week_start
from citadel.pow.fields import FIELD_KEYS, get_field
from citadel.pow.service import DONATED_STATUSES, STATUS_IN_PROGRESS

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

ARCHIVE_TOP_N = 3
TIME_TOTAL = "time_total"
POPULAR_POW = "popular_pow"


@dataclass
class RankingEntry:
    rank: int
    user_id: int
    username: str
    avatar_url: str | None
    role_status: int
    value: int


@dataclass
class PopularPow:
    rank: int
    pow_record_id: int
    user_id: int
    username: str
    avatar_url: str | None
    field: str
    goal_content: str
    total_reactions: int
    reaction_details: dict[str, int]
    completed_at: datetime | None
    is_last_week: bool = False


@dataclass
class ArchiveResult:
    week_start: datetime
    week_end: datetime
    skipped: bool = False
    saved: dict[str, int] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Live boards
# ---------------------------------------------------------------------------


async def _user_totals(
    db: AsyncSession, value: Any, conditions: list[Any], limit: int  # noqa: ANN401
) -> list[RankingEntry]:
    total = func.sum(value).label("total")
    result = await db.execute(
        select(User.id, User.discord_username, User.discord_avatar_url, User.role_status, total)
        .join(PowRecord, PowRecord.user_id == User.id)
        .where(*conditions)
        .group_by(User.id, User.discord_username, User.discord_avatar_url, User.role_status)
        .order_by(total.desc(), User.id)
        .limit(limit)
    )
    return [
        RankingEntry(
            rank=i,
            user_id=user_id,
            username=username,
            avatar_url=avatar,
            role_status=role_status,
            value=int(value_sum or 0),
        )
        for i, (user_id, username, avatar, role_status, value_sum) in enumerate(result.all(), start=1)
    ]


async def donation_leaderboard(
    db: AsyncSession, *, field: str | None = None, now: datetime | None = None, limit: int = 50
) -> list[RankingEntry]:
    """Sats donated this week, per user, optionally within one field."""
    conditions: list[Any] = [
        PowRecord.status.in_(DONATED_STATUSES),
        PowRecord.donated_at >= get_week_start(now),
    ]
    if field is not None:
        get_field(field)
        conditions.append(PowRecord.field == field)
    return await _user_totals(db, PowRecord.actual_sats, conditions, limit)


async def time_leaderboard(
    db: AsyncSession, *, field: str | None = None, now: datetime | None = None, limit: int = 50
) -> list[RankingEntry]:
    """Seconds of POW completed this week, per user, optionally within one field."""
    conditions: list[Any] = [
        PowRecord.status != STATUS_IN_PROGRESS,
        PowRecord.completed_at >= get_week_start(now),
    ]
    if field is not None:
        get_field(field)
        conditions.append(PowRecord.field == field)
    return await _user_totals(db, PowRecord.actual_time, conditions, limit)


async def popular_pows(
    db: AsyncSession, *, now: datetime | None = None, limit: int | None = None, since: datetime | None = None
) -> list[PopularPow]:
    """
    Records with at least one reaction, most reacted first.

    By default looks back a few days before the week start so the board is
    not empty right after the reset; this week's records are listed before
    last week's.
    """
    settings = get_settings()
    week_start = get_week_start(now)
    if since is None:
        since = week_start - timedelta(days=settings.popular_pow_lookback_days)
    limit = limit or settings.popular_pow_limit

    result = await db.execute(
        select(DiscordReaction, PowRecord, User)
        .join(PowRecord, PowRecord.id == DiscordReaction.pow_record_id)
        .join(User, User.id == PowRecord.user_id)
        .where(DiscordReaction.total_reactions > 0, PowRecord.completed_at >= since)
        .order_by(DiscordReaction.total_reactions.desc(), PowRecord.id)
    )
    this_week: list[PopularPow] = []
    last_week: list[PopularPow] = []
    for reaction, record, user in result.all():
        is_last_week = record.completed_at is None or record.completed_at < week_start
        entry = PopularPow(
            rank=0,
            pow_record_id=record.id,
            user_id=user.id,
            username=user.discord_username,
            avatar_url=user.discord_avatar_url,
            field=record.field,
            goal_content=record.goal_content,
            total_reactions=reaction.total_reactions,
            reaction_details=dict(reaction.reaction_details or {}),
            completed_at=record.completed_at,
            is_last_week=is_last_week,
        )
        (last_week if is_last_week else this_week).append(entry)

    combined = (this_week + last_week)[:limit]
    for i, entry in enumerate(combined, start=1):
        entry.rank = i
    return combined


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------


def _archive_entry(entry: RankingEntry) -> dict[str, Any]:
    return {
        "rank": entry.rank,
        "user_id": entry.user_id,
        "username": entry.username,
        "avatar_url": entry.avatar_url,
        "value": entry.value,
    }


def _archive_popular(entry: PopularPow) -> dict[str, Any]:
    data = asdict(entry)
    data.pop("is_last_week")
    data["completed_at"] = entry.completed_at.isoformat() if entry.completed_at else None
    return data


async def archive_week(db: AsyncSession, *, now: datetime | None = None) -> ArchiveResult:
    """
    Freeze the current week's top 3 boards. Idempotent per week start.

    Stores ``time_total``, ``time_<field>`` for every field, and
    ``popular_pow`` (this week's records only).
    """
    now = now or datetime.now(timezone.utc)
    week_start, week_end = get_week_boundaries(now)
    outcome = ArchiveResult(week_start=week_start, week_end=week_end)

    existing = await db.execute(select(WeeklyRanking.id).where(WeeklyRanking.week_start == week_start).limit(1))
    if existing.first() is not None:
        outcome.skipped = True
        return outcome

    boards: dict[str, list[dict[str, Any]]] = {
        TIME_TOTAL: [_archive_entry(e) for e in await time_leaderboard(db, now=now, limit=ARCHIVE_TOP_N)]
    }
    for key in FIELD_KEYS:
        entries = await time_leaderboard(db, field=key, now=now, limit=ARCHIVE_TOP_N)
        boards[f"time_{key}"] = [_archive_entry(e) for e in entries]
    popular = await popular_pows(db, now=now, limit=ARCHIVE_TOP_N, since=week_start)
    boards[POPULAR_POW] = [_archive_popular(e) for e in popular]

    for ranking_type, rankings in boards.items():
        db.add(
            WeeklyRanking(
                week_start=week_start,
                week_end=week_end,
                ranking_type=ranking_type,
                rankings=rankings,
                created_at=now,
            )
        )
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent run archived the same week first
        await db.rollback()
        outcome.skipped = True
        return outcome

    outcome.saved = {k: len(v) for k, v in boards.items()}
    logger.info("leaderboard_archived", week_start=week_start.isoformat(), boards=len(boards))
    return outcome


async def get_archived_week(db: AsyncSession, week_start: datetime | None = None) -> list[WeeklyRanking]:
    """Archived boards for ``week_start``, or for the latest archived week."""
    if week_start is None:
        latest = await db.execute(select(func.max(WeeklyRanking.week_start)))
        week_start = latest.scalar_one_or_none()
        if week_start is None:
            return []
    result = await db.execute(
        select(WeeklyRanking).where(WeeklyRanking.week_start == week_start).order_by(WeeklyRanking.id)
    )
    return list(result.scalars().all())
