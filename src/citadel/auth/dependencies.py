"""FastAPI authentication dependencies."""

from __future__ import annotations

import secrets

import jwt
from fastapi import Depends, Header, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from citadel.auth.discord_oauth import ROLE_BITCOINER
from citadel.auth.jwt import verify_token
from citadel.auth.service import get_user_by_id
from citadel.config import get_settings
from citadel.database import get_session
from citadel.db.models import User

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the bearer access token to a User; 401 on any failure."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await get_user_by_id(db, int(payload["sub"]))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def require_member_role(user: User = Depends(get_current_user)) -> User:
    """
    Same as get_current_user but requires at least the bitcoiner role.

    Gates every POW and group POW write endpoint.
    """
    if user.role_status < ROLE_BITCOINER:
        raise HTTPException(status_code=403, detail="role required")
    return user


async def verify_cron_secret(x_cron_secret: str | None = Header(default=None)) -> None:
    """Authorise scheduler-triggered endpoints by shared secret."""
    expected = get_settings().cron_secret
    if not expected or not x_cron_secret or not secrets.compare_digest(x_cron_secret, expected):
        raise HTTPException(status_code=401, detail="Invalid cron secret")
