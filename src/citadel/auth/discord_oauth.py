"""
Discord OAuth2 login and guild role mapping.

The user's own bearer token (from the code exchange) is used for
``/users/@me`` and their guild membership; role re-sync later uses the
bot token through ``citadel.discord.client``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog

from citadel.config import Settings, get_settings

logger = structlog.get_logger()

ROLE_NONE = 0
ROLE_BITCOINER = 1
ROLE_FULLNODER = 2

OAUTH_SCOPES = "identify guilds guilds.members.read"


class OAuthError(Exception):
    """The identity provider rejected the code or could not be reached."""


@dataclass
class DiscordIdentity:
    discord_id: str
    username: str
    avatar_url: str
    roles: list[str] = field(default_factory=list)


def map_role_status(roles: list[str], settings: Settings | None = None) -> int:
    """Fullnoder outranks bitcoiner; anything else is no role."""
    settings = settings or get_settings()
    if settings.discord_role_fullnoder in roles:
        return ROLE_FULLNODER
    if settings.discord_role_bitcoiner in roles:
        return ROLE_BITCOINER
    return ROLE_NONE


def avatar_url(discord_id: str, avatar_hash: str | None) -> str:
    if avatar_hash:
        return f"https://cdn.discordapp.com/avatars/{discord_id}/{avatar_hash}.png"
    return f"https://cdn.discordapp.com/embed/avatars/{int(discord_id) % 5}.png"


def authorize_url(state: str, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    query = urlencode(
        {
            "client_id": settings.discord_client_id,
            "redirect_uri": settings.discord_redirect_uri,
            "response_type": "code",
            "scope": OAUTH_SCOPES,
            "state": state,
        }
    )
    return f"{settings.discord_oauth_authorize_url}?{query}"


class DiscordOAuthClient:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport
        self._timeout = timeout

    async def exchange_code(self, client: httpx.AsyncClient, code: str) -> str:
        response = await client.post(
            f"{self.settings.discord_api_url}/oauth2/token",
            data={
                "client_id": self.settings.discord_client_id,
                "client_secret": self.settings.discord_client_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.settings.discord_redirect_uri,
            },
        )
        if response.is_error:
            logger.warning("discord_token_exchange_failed", status=response.status_code)
            msg = "Failed to exchange authorization code"
            raise OAuthError(msg)
        return str(response.json()["access_token"])

    async def _guild_roles(self, client: httpx.AsyncClient, access_token: str) -> list[str]:
        guild_id = self.settings.discord_guild_id
        if not guild_id:
            return []
        response = await client.get(
            f"{self.settings.discord_api_url}/users/@me/guilds/{guild_id}/member",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.is_error:
            # Not a guild member
            return []
        return [str(r) for r in response.json().get("roles", [])]

    async def fetch_identity(self, code: str) -> DiscordIdentity:
        """Exchange ``code`` and resolve the user's profile and guild roles."""
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            try:
                access_token = await self.exchange_code(client, code)
                response = await client.get(
                    f"{self.settings.discord_api_url}/users/@me",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                if response.is_error:
                    msg = "Failed to fetch Discord profile"
                    raise OAuthError(msg)
                profile: dict[str, Any] = response.json()
                roles = await self._guild_roles(client, access_token)
            except httpx.HTTPError as e:
                msg = f"Discord OAuth request failed: {e}"
                raise OAuthError(msg) from e

        discord_id = str(profile["id"])
        return DiscordIdentity(
            discord_id=discord_id,
            username=profile.get("username") or discord_id,
            avatar_url=avatar_url(discord_id, profile.get("avatar")),
            roles=roles,
        )
