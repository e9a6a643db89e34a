"""Discord router: reaction sync for announced POW records."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from citadel.auth.dependencies import get_current_user
from citadel.database import get_session
from citadel.db.models import User
from citadel.dependencies import get_discord_client
from citadel.discord.client import DiscordClient, DiscordError
from citadel.discord.reactions import NotAnnouncedError, sync_all, sync_record
from citadel.discord.schemas import RecordReactionsResponse, SyncReactionsResponse

router = APIRouter(prefix="/api/v1/discord", tags=["Discord"])


@router.post("/sync-reactions", response_model=SyncReactionsResponse)
async def sync_reactions(
    _user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    discord: DiscordClient = Depends(get_discord_client),
) -> SyncReactionsResponse:
    """Refresh reaction counts for every announced record (rate limited)."""
    try:
        result = await sync_all(db, discord)
    except DiscordError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return SyncReactionsResponse(**asdict(result))


@router.get("/sync-reactions", response_model=RecordReactionsResponse)
async def sync_record_reactions(
    pow_record_id: int = Query(...),
    _user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    discord: DiscordClient = Depends(get_discord_client),
) -> RecordReactionsResponse:
    try:
        counts = await sync_record(db, discord, pow_record_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except NotAnnouncedError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except DiscordError as e:
        raise HTTPException(status_code=502, detail="Failed to fetch Discord message") from e
    return RecordReactionsResponse(
        pow_record_id=pow_record_id, total_reactions=counts.total, reaction_details=counts.details
    )
