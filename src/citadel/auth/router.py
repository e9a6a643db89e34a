"""Authentication router: all /api/v1/auth/* endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import structlog
from fastapi import APIRouter, Depends, HTTPException
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from citadel.auth.dependencies import get_current_user
from citadel.auth.discord_oauth import DiscordOAuthClient, OAuthError, authorize_url
from citadel.auth.jwt import create_access_token, create_refresh_token, verify_token
from citadel.auth.schemas import (
    CallbackRequest,
    LoginUrlResponse,
    LogoutRequest,
    RefreshRequest,
    TokenResponse,
    UserResponse,
)
from citadel.auth.service import (
    consume_oauth_state,
    create_oauth_state,
    get_refresh_token,
    get_user_by_id,
    hash_token,
    revoke_all_tokens,
    revoke_refresh_token,
    rotate_refresh_token,
    store_refresh_token,
    upsert_discord_user,
)
from citadel.config import get_settings
from citadel.database import get_session
from citadel.db.models import User
from citadel.dependencies import get_oauth_client
from citadel.redis_client import get_redis

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


async def _issue_tokens(db: AsyncSession, user: User, *, created: bool = False) -> TokenResponse:
    """Create access + refresh tokens and store the refresh token hash."""
    settings = get_settings()
    token_id = str(uuid.uuid4())
    access_token = create_access_token(user.id, user.discord_id, user.role_status)
    refresh_token = create_refresh_token(user.id, user.discord_id, token_id=token_id)

    await store_refresh_token(
        db,
        user_id=user.id,
        token_id=token_id,
        token_hash=hash_token(refresh_token),
        expires_at=datetime.now(timezone.utc) + timedelta(days=settings.jwt_refresh_token_expire_days),
    )
    await db.commit()

    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=UserResponse.model_validate(user),
        created=created,
    )


@router.get("/discord/login", response_model=LoginUrlResponse)
async def discord_login(redis: Redis = Depends(get_redis)) -> LoginUrlResponse:  # type: ignore[assignment]
    """Start the OAuth flow: return the Discord authorize URL."""
    state = await create_oauth_state(redis)
    return LoginUrlResponse(authorize_url=authorize_url(state), state=state)


@router.post("/discord/callback", response_model=TokenResponse)
async def discord_callback(
    body: CallbackRequest,
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),  # type: ignore[assignment]
    oauth: DiscordOAuthClient = Depends(get_oauth_client),
) -> TokenResponse:
    """Finish the OAuth flow: exchange the code, sync roles, issue tokens."""
    if not await consume_oauth_state(redis, body.state):
        raise HTTPException(status_code=400, detail="Invalid or expired OAuth state")

    try:
        identity = await oauth.fetch_identity(body.code)
    except OAuthError as e:
        logger.warning("discord_login_failed", error=str(e))
        raise HTTPException(status_code=401, detail=str(e)) from e

    user, created = await upsert_discord_user(db, identity)
    logger.info("discord_login", user_id=user.id, role_status=user.role_status, created=created)
    return await _issue_tokens(db, user, created=created)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest,
    db: AsyncSession = Depends(get_session),
) -> TokenResponse:
    """Rotate a refresh token."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
    except pyjwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    jti = payload.get("jti")
    if not jti:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    old_token = await get_refresh_token(db, jti)
    if old_token is None:
        raise HTTPException(status_code=401, detail="Refresh token not found")
    if old_token.is_revoked:
        # Reuse of a rotated token: revoke the whole family
        await revoke_all_tokens(db, old_token.user_id)
        await db.commit()
        raise HTTPException(status_code=401, detail="Refresh token has been revoked")

    user = await get_user_by_id(db, old_token.user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    settings = get_settings()
    new_token_id = str(uuid.uuid4())
    new_access = create_access_token(user.id, user.discord_id, user.role_status)
    new_refresh = create_refresh_token(user.id, user.discord_id, token_id=new_token_id)
    await rotate_refresh_token(
        db,
        old_token=old_token,
        new_token_id=new_token_id,
        new_token_hash=hash_token(new_refresh),
        new_expires_at=datetime.now(timezone.utc) + timedelta(days=settings.jwt_refresh_token_expire_days),
    )
    await db.commit()

    return TokenResponse(
        access_token=new_access,
        refresh_token=new_refresh,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=UserResponse.model_validate(user),
    )


@router.post("/logout")
async def logout(
    body: LogoutRequest,
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Revoke a refresh token. Expired or malformed tokens are ignored."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
    except pyjwt.InvalidTokenError:
        return {"status": "logged_out"}

    jti = payload.get("jti")
    if jti:
        await revoke_refresh_token(db, jti)
        await db.commit()
    return {"status": "logged_out"}


@router.post("/logout-all")
async def logout_all(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str | int]:
    """Revoke all refresh tokens for the current user."""
    count = await revoke_all_tokens(db, user.id)
    await db.commit()
    return {"status": "all_sessions_revoked", "revoked_count": count}
