"""User router: /api/v1/users/* endpoints."""

from __future__ import annotations

from dataclasses import asdict

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from citadel.auth.dependencies import get_current_user
from citadel.auth.schemas import UserResponse
from citadel.database import get_session
from citadel.db.models import User
from citadel.dependencies import get_discord_client
from citadel.discord.client import DiscordClient, DiscordError
from citadel.users.schemas import SyncRoleResponse, UserStatsResponse
from citadel.users.service import NotGuildMemberError, get_user_stats, sync_roles

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("/me", response_model=UserResponse)
async def get_profile(user: User = Depends(get_current_user)) -> UserResponse:
    """Get own profile, including donation counters."""
    return UserResponse.model_validate(user)


@router.get("/me/stats", response_model=UserStatsResponse)
async def get_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UserStatsResponse:
    stats = await get_user_stats(db, user)
    return UserStatsResponse.model_validate(asdict(stats))


@router.post("/me/sync-role", response_model=SyncRoleResponse)
async def sync_role(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    discord: DiscordClient = Depends(get_discord_client),
) -> SyncRoleResponse:
    """Re-read the user's guild roles without a fresh OAuth login."""
    try:
        user = await sync_roles(db, discord, user)
    except NotGuildMemberError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except DiscordError as e:
        logger.warning("role_sync_failed", user_id=user.id, error=str(e))
        raise HTTPException(status_code=502, detail="Failed to read Discord roles") from e
    return SyncRoleResponse(role_status=user.role_status, user=UserResponse.model_validate(user))
