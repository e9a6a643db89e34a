"""Cron trigger router: /api/v1/cron/* endpoints for external schedulers.

Each endpoint runs one bounded batch of the same job the arq worker runs
on its own schedule. All require the ``X-Cron-Secret`` header.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from citadel.auth.dependencies import verify_cron_secret
from citadel.database import get_session
from citadel.dependencies import get_discord_client, get_push_sender
from citadel.discord.client import DiscordClient, DiscordError
from citadel.discord.reactions import sync_all
from citadel.discord.schemas import SyncReactionsResponse
from citadel.leaderboard.schemas import ArchiveResponse
from citadel.leaderboard.service import archive_week
from citadel.push.schemas import ProcessScheduledResponse
from citadel.push.sender import WebPushSender
from citadel.push.service import process_scheduled

router = APIRouter(prefix="/api/v1/cron", tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


@router.post("/process-scheduled-push", response_model=ProcessScheduledResponse)
async def process_scheduled_push(
    db: AsyncSession = Depends(get_session),
    sender: WebPushSender = Depends(get_push_sender),
) -> ProcessScheduledResponse:
    return ProcessScheduledResponse(**await process_scheduled(db, sender))


@router.post("/sync-reactions", response_model=SyncReactionsResponse)
async def sync_reactions(
    db: AsyncSession = Depends(get_session),
    discord: DiscordClient = Depends(get_discord_client),
) -> SyncReactionsResponse:
    try:
        result = await sync_all(db, discord)
    except DiscordError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return SyncReactionsResponse(**asdict(result))


@router.post("/archive-leaderboard", response_model=ArchiveResponse)
async def archive_leaderboard(db: AsyncSession = Depends(get_session)) -> ArchiveResponse:
    """Freeze this week's top rankings (run just before the weekly reset)."""
    return ArchiveResponse(**asdict(await archive_week(db)))
