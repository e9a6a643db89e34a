"""User profile statistics and Discord role re-sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select

from citadel.auth.discord_oauth import map_role_status
from citadel.config import get_settings
from citadel.db.models import GroupPowParticipant, PowRecord, User
from citadel.discord.client import DiscordClient, DiscordError
from citadel.pow.service import DONATED_STATUSES

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


class NotGuildMemberError(LookupError):
    """The user is not (or no longer) a member of the Discord guild."""


@dataclass
class FieldStats:
    field: str
    pow_count: int
    total_time: int
    donated_sats: int


@dataclass
class UserStats:
    pow_count: int
    total_pow_time: int
    total_donated_sats: int
    accumulated_sats: int
    average_achievement_rate: float
    group_pow_count: int
    fields: list[FieldStats] = field(default_factory=list)


async def get_user_stats(db: AsyncSession, user: User) -> UserStats:
    """Aggregate the user's POW history."""
    totals = await db.execute(
        select(func.count(PowRecord.id), func.avg(PowRecord.achievement_rate)).where(PowRecord.user_id == user.id)
    )
    pow_count, avg_rate = totals.one()

    donated = func.sum(PowRecord.actual_sats).filter(PowRecord.status.in_(DONATED_STATUSES))
    per_field = await db.execute(
        select(PowRecord.field, func.count(PowRecord.id), func.sum(PowRecord.actual_time), donated)
        .where(PowRecord.user_id == user.id)
        .group_by(PowRecord.field)
        .order_by(func.sum(PowRecord.actual_time).desc())
    )
    groups = await db.execute(
        select(func.count(GroupPowParticipant.id)).where(GroupPowParticipant.user_id == user.id)
    )

    return UserStats(
        pow_count=int(pow_count or 0),
        total_pow_time=user.total_pow_time,
        total_donated_sats=user.total_donated_sats,
        accumulated_sats=user.accumulated_sats,
        average_achievement_rate=round(float(avg_rate or 0.0), 1),
        group_pow_count=int(groups.scalar_one()),
        fields=[
            FieldStats(field=f, pow_count=int(count), total_time=int(time or 0), donated_sats=int(sats or 0))
            for f, count, time, sats in per_field.all()
        ],
    )


async def sync_roles(db: AsyncSession, discord: DiscordClient, user: User) -> User:
    """
    Refresh the user's guild roles with the bot token.

    Raises:
        NotGuildMemberError: The user is not in the guild.
        DiscordError: Discord is not configured or the lookup failed.
    """
    guild_id = get_settings().discord_guild_id
    if not guild_id or not discord.configured:
        msg = "Discord configuration missing"
        raise DiscordError(msg)

    member = await discord.get_guild_member(guild_id, user.discord_id)
    if member is None:
        msg = "Not a member of the Discord server"
        raise NotGuildMemberError(msg)

    roles = [str(r) for r in member.get("roles") or []]
    previous = user.role_status
    user.discord_roles = roles
    user.role_status = map_role_status(roles)
    user.updated_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("user_roles_synced", user_id=user.id, role_status=user.role_status, previous=previous)
    return user
