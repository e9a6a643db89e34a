"""Periodic batch jobs run by the arq worker.

Schedules:
- Scheduled push delivery: every minute
- Discord reaction sync: every 5 minutes
- Weekly leaderboard archive: Sunday 09:55 UTC (18:55 KST, before the reset)
"""

from __future__ import annotations

import logging
from dataclasses import asdict

from citadel.config import get_settings
from citadel.database import close_db, get_session_factory, init_db
from citadel.discord.client import DiscordClient, DiscordError
from citadel.discord.reactions import sync_all
from citadel.leaderboard.service import archive_week
from citadel.middleware.logging import setup_logging
from citadel.push.sender import WebPushSender
from citadel.push.service import process_scheduled

logger = logging.getLogger(__name__)


async def process_scheduled_push(ctx: dict) -> dict[str, int]:
    """Deliver pushes that are due."""
    sender: WebPushSender = ctx["push_sender"]
    if not sender.vapid_private_key:
        return {"processed": 0, "success": 0, "failed": 0}
    async with get_session_factory()() as db:
        return await process_scheduled(db, sender)


async def sync_reactions(ctx: dict) -> dict[str, object]:
    discord: DiscordClient = ctx["discord"]
    if not discord.configured or not get_settings().discord_pow_channel_id:
        return {"skipped": True}
    async with get_session_factory()() as db:
        try:
            result = await sync_all(db, discord)
        except DiscordError:
            logger.warning("Reaction sync failed", exc_info=True)
            return {"skipped": True}
    if not result.skipped:
        logger.info("Reactions synced: %d/%d", result.updated, result.total)
    return asdict(result)


async def archive_leaderboard(ctx: dict) -> dict[str, object]:
    async with get_session_factory()() as db:
        result = await archive_week(db)
    if result.skipped:
        logger.info("Week starting %s already archived", result.week_start.isoformat())
    else:
        logger.info("Archived %d boards for week starting %s", len(result.saved), result.week_start.isoformat())
    return {"skipped": result.skipped, "week_start": result.week_start.isoformat(), "saved": result.saved}


async def startup(ctx: dict) -> None:
    """Initialize DB and outbound clients on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    ctx["discord"] = DiscordClient.from_settings(settings)
    ctx["push_sender"] = WebPushSender.from_settings(settings)
    logger.info("Scheduled-jobs worker started")


async def shutdown(ctx: dict) -> None:
    await close_db()
    logger.info("Scheduled-jobs worker shut down")
