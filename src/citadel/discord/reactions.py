"""
Reaction counts for announced POW records.

Each announcement message is fetched from the POW channel and its reaction
counts are folded into a ``DiscordReaction`` row, which drives the popular
POW leaderboard. The batch run is rate limited through a ``SyncLog`` row.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select

from citadel.config import get_settings
from citadel.db.models import DiscordReaction, PowRecord, SyncLog
from citadel.discord.client import DiscordClient, DiscordError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

SYNC_TYPE = "discord_reactions"


class NotAnnouncedError(ValueError):
    """The POW record has no Discord announcement to read reactions from."""


@dataclass
class ReactionCounts:
    total: int
    details: dict[str, int] = field(default_factory=dict)


@dataclass
class SyncResult:
    skipped: bool = False
    updated: int = 0
    total: int = 0
    next_sync_available: datetime | None = None
    remaining_seconds: int | None = None


def count_reactions(message: dict[str, Any]) -> ReactionCounts:
    """Sum reaction counts per emoji name from a Discord message object."""
    details: dict[str, int] = {}
    for reaction in message.get("reactions") or []:
        name = (reaction.get("emoji") or {}).get("name") or "unknown"
        details[name] = details.get(name, 0) + int(reaction.get("count") or 0)
    return ReactionCounts(total=sum(details.values()), details=details)


def _channel_id() -> str:
    channel_id = get_settings().discord_pow_channel_id
    if not channel_id:
        msg = "Discord configuration missing"
        raise DiscordError(msg)
    return channel_id


async def _store_counts(db: AsyncSession, record: PowRecord, counts: ReactionCounts, now: datetime) -> None:
    result = await db.execute(select(DiscordReaction).where(DiscordReaction.pow_record_id == record.id))
    row = result.scalar_one_or_none()
    if row is None:
        row = DiscordReaction(pow_record_id=record.id, discord_message_id=record.discord_message_id)
        db.add(row)
    row.discord_message_id = record.discord_message_id  # type: ignore[assignment]
    row.total_reactions = counts.total
    row.reaction_details = counts.details
    row.last_updated_at = now


async def sync_record(
    db: AsyncSession, discord: DiscordClient, pow_record_id: int, *, now: datetime | None = None
) -> ReactionCounts:
    """
    Refresh the reaction counts of a single record.

    Raises:
        LookupError: Unknown record.
        NotAnnouncedError: The record was never posted to Discord.
        DiscordError: Discord is not configured or the fetch failed.
    """
    record = await db.get(PowRecord, pow_record_id)
    if record is None:
        msg = "POW record not found"
        raise LookupError(msg)
    if not record.discord_message_id:
        msg = "POW record has no Discord message"
        raise NotAnnouncedError(msg)

    message = await discord.get_message(_channel_id(), record.discord_message_id)
    counts = count_reactions(message)
    await _store_counts(db, record, counts, now or datetime.now(timezone.utc))
    await db.commit()
    return counts


async def sync_all(db: AsyncSession, discord: DiscordClient, *, now: datetime | None = None) -> SyncResult:
    """Refresh every announced record unless a sync ran within the cooldown."""
    now = now or datetime.now(timezone.utc)
    channel_id = _channel_id()
    cooldown = timedelta(seconds=get_settings().reaction_sync_cooldown_seconds)

    log = await db.get(SyncLog, SYNC_TYPE)
    if log is not None and log.last_synced_at is not None and now - log.last_synced_at < cooldown:
        available = log.last_synced_at + cooldown
        return SyncResult(
            skipped=True,
            next_sync_available=available,
            remaining_seconds=math.ceil((available - now).total_seconds()),
        )

    records = (
        await db.execute(select(PowRecord).where(PowRecord.discord_message_id.is_not(None)).order_by(PowRecord.id))
    ).scalars().all()

    updated = 0
    for record in records:
        try:
            message = await discord.get_message(channel_id, record.discord_message_id)  # type: ignore[arg-type]
        except DiscordError as e:
            logger.warning(
                "reaction_fetch_failed",
                pow_record_id=record.id,
                message_id=record.discord_message_id,
                status_code=e.status_code,
            )
            continue
        await _store_counts(db, record, count_reactions(message), now)
        updated += 1

    if log is None:
        log = SyncLog(type=SYNC_TYPE, sync_count=0)
        db.add(log)
    log.last_synced_at = now
    log.sync_count = (log.sync_count or 0) + 1
    await db.commit()

    logger.info("reactions_synced", updated=updated, total=len(records))
    return SyncResult(updated=updated, total=len(records))
