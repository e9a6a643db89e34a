"""
Authentication business logic.

Handles the OAuth state nonce, Discord user upsert, and refresh-token
rotation/revocation.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select, update

from citadel.auth.discord_oauth import DiscordIdentity, map_role_status
from citadel.config import get_settings
from citadel.db.models import RefreshToken, User

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

_STATE_KEY = "auth:oauth_state:{state}"


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode()).hexdigest()


# ---------------------------------------------------------------------------
# OAuth state
# ---------------------------------------------------------------------------


async def create_oauth_state(redis: Redis) -> str:
    """Mint a single-use state nonce for the authorize redirect."""
    settings = get_settings()
    state = secrets.token_urlsafe(24)
    await redis.set(_STATE_KEY.format(state=state), "1", ex=settings.oauth_state_ttl_seconds)
    return state


async def consume_oauth_state(redis: Redis, state: str) -> bool:
    """Delete the nonce; True only if it existed (i.e. was unused and unexpired)."""
    deleted = await redis.delete(_STATE_KEY.format(state=state))
    return bool(deleted)


# ---------------------------------------------------------------------------
# User queries
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_discord_id(db: AsyncSession, discord_id: str) -> User | None:
    result = await db.execute(select(User).where(User.discord_id == discord_id))
    return result.scalar_one_or_none()


async def upsert_discord_user(db: AsyncSession, identity: DiscordIdentity) -> tuple[User, bool]:
    """
    Create or refresh a user from a Discord identity.

    Profile fields and roles are overwritten on every login; counters are
    never touched here.

    Returns:
        Tuple of (user, created).
    """
    now = datetime.now(timezone.utc)
    role_status = map_role_status(identity.roles)
    user = await get_user_by_discord_id(db, identity.discord_id)
    if user is None:
        user = User(
            discord_id=identity.discord_id,
            discord_username=identity.username,
            discord_avatar_url=identity.avatar_url,
            discord_roles=identity.roles,
            role_status=role_status,
            accumulated_sats=0,
            total_donated_sats=0,
            total_pow_time=0,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        await db.flush()
        logger.info("user_created", user_id=user.id, discord_id=identity.discord_id, role_status=role_status)
        return user, True

    user.discord_username = identity.username
    user.discord_avatar_url = identity.avatar_url
    user.discord_roles = identity.roles
    user.role_status = role_status
    user.updated_at = now
    await db.flush()
    return user, False


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


async def store_refresh_token(
    db: AsyncSession,
    user_id: int,
    token_id: str,
    token_hash: str,
    expires_at: datetime,
) -> RefreshToken:
    token = RefreshToken(
        id=token_id,
        user_id=user_id,
        token_hash=token_hash,
        issued_at=datetime.now(timezone.utc),
        expires_at=expires_at,
    )
    db.add(token)
    await db.flush()
    return token


async def get_refresh_token(db: AsyncSession, token_id: str) -> RefreshToken | None:
    result = await db.execute(select(RefreshToken).where(RefreshToken.id == token_id))
    return result.scalar_one_or_none()


async def rotate_refresh_token(
    db: AsyncSession,
    old_token: RefreshToken,
    new_token_id: str,
    new_token_hash: str,
    new_expires_at: datetime,
) -> RefreshToken:
    """Revoke ``old_token`` and record its replacement."""
    old_token.is_revoked = True
    old_token.revoked_at = datetime.now(timezone.utc)
    old_token.replaced_by = new_token_id
    return await store_refresh_token(
        db,
        user_id=old_token.user_id,
        token_id=new_token_id,
        token_hash=new_token_hash,
        expires_at=new_expires_at,
    )


async def revoke_refresh_token(db: AsyncSession, token_id: str) -> bool:
    token = await get_refresh_token(db, token_id)
    if token is None:
        return False
    token.is_revoked = True
    token.revoked_at = datetime.now(timezone.utc)
    await db.flush()
    return True


async def revoke_all_tokens(db: AsyncSession, user_id: int) -> int:
    """Revoke every live refresh token of a user. Returns the count revoked."""
    result = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .where(RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True, revoked_at=datetime.now(timezone.utc))
    )
    await db.flush()
    return result.rowcount  # type: ignore[return-value]
