"""Liveness, readiness and version endpoints.

Readiness covers only the stores the API cannot serve without. Discord,
Blink, storage and push are optional integrations: a missing credential
disables the matching side channel, so ``/version`` reports which ones
are configured instead of failing readiness.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from citadel.config import Settings, get_settings
from citadel.database import get_session
from citadel.redis_client import get_redis

router = APIRouter()


def _integrations(settings: Settings) -> dict[str, bool]:
    return {
        "discord_bot": bool(settings.discord_bot_token and settings.discord_guild_id),
        "pow_channel": bool(settings.discord_pow_channel_id),
        "group_pow_channel": bool(settings.discord_group_pow_channel_id),
        "blink": bool(settings.blink_api_key and settings.blink_wallet_id),
        "storage": bool(settings.storage_url and settings.storage_service_key),
        "web_push": bool(settings.vapid_public_key and settings.vapid_private_key),
    }


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(db: AsyncSession = Depends(get_session)) -> dict[str, object]:
    """Ready when PostgreSQL answers a query and Redis answers PING."""
    checks: dict[str, str] = {"database": "ok", "redis": "ok"}
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        checks["database"] = f"error: {exc}"
    try:
        await get_redis().ping()
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    ready = all(v == "ok" for v in checks.values())
    return {"status": "ready" if ready else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, object]:
    settings = get_settings()
    return {
        "service": "citadel-pow",
        "version": settings.app_version,
        "environment": settings.environment,
        "integrations": _integrations(settings),
    }
